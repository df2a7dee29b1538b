from fastapi import APIRouter

from fulfillment.api.routes import (
    applications,
    friend_asks,
    health,
    matches,
    notifications,
    postings,
    sequential_invite,
)

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(postings.router, prefix="/postings", tags=["postings"])
api_router.include_router(applications.router, prefix="/applications", tags=["applications"])
api_router.include_router(friend_asks.router, prefix="/friend-ask", tags=["invites"])
api_router.include_router(sequential_invite.router, prefix="/sequential-invite", tags=["invites"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(matches.router, prefix="/matches", tags=["matching"])
