#!/usr/bin/env python3
"""
Seed script to create initial data for the application.
Run this after deployment to populate the database with demo users, events and links.
"""
import asyncio
from app.access.decision import check_access
from app.access.share_tokens import create_share_token
from app.access.types import AccessGranted, AuthenticatedPrincipal
from app.core.clock import system_clock
from app.crud import event as crud_event
from app.crud import participant as crud_participant
from app.crud.user import create_user
from app.db.database import AsyncSessionLocal, init_db
from app.models.enums import ParticipantRole, Visibility
from app.schemas.event import EventCreate, EventPermissionDefaults
from app.schemas.participant import CoHostInvite, ParticipantInvite
from app.schemas.share_token import ShareTokenCreate, ShareTokenPermissions
from app.schemas.user import UserCreate

async def seed_data():
    """Seed the database with initial data."""
    print("Starting database seeding...")
    await init_db()

    async with AsyncSessionLocal() as session:
        host = await create_user(session, UserCreate(
            email="host@example.com", username="host", full_name="Event Host", password="host12345"
        ))
        helper = await create_user(session, UserCreate(
            email="cohost@example.com", username="cohost", full_name="Co Host", password="cohost123"
        ))
        guest = await create_user(session, UserCreate(
            email="guest@example.com", username="guest", full_name="Invited Guest", password="guest1234"
        ))
        print(f"Created users: host(id={host.id}), cohost(id={helper.id}), guest(id={guest.id})")

        wedding = await crud_event.create_event(session, EventCreate(
            title="Summer Wedding",
            description="Share your photos from the day",
            visibility=Visibility.ANYONE_WITH_LINK,
            permissions=EventPermissionDefaults(can_upload=True, require_approval=True),
        ), host, clock=system_clock)
        retreat = await crud_event.create_event(session, EventCreate(
            title="Team Retreat",
            description="Invited guests only",
            visibility=Visibility.INVITED_ONLY,
        ), host, clock=system_clock)
        print(f"Created events: wedding(id={wedding.id}), retreat(id={retreat.id})")

        decision = await check_access(
            session, wedding.id, AuthenticatedPrincipal(user_id=host.id, email=host.email), clock=system_clock
        )
        assert isinstance(decision, AccessGranted)
        await crud_participant.invite_co_host(
            session, wedding, CoHostInvite(user_id=helper.id), decision, clock=system_clock, actor_id=host.id
        )
        await crud_participant.manage_co_host(
            session, wedding, helper.id, "approve", decision, clock=system_clock, actor_id=host.id
        )
        token = await create_share_token(session, wedding, ShareTokenCreate(
            permissions=ShareTokenPermissions(upload=True),
            max_uses=50,
        ), host.id, clock=system_clock)
        print(f"Wedding co-host approved; share link token={token.token}")

        decision = await check_access(
            session, retreat.id, AuthenticatedPrincipal(user_id=host.id, email=host.email), clock=system_clock
        )
        assert isinstance(decision, AccessGranted)
        await crud_participant.invite_participant(
            session,
            retreat,
            ParticipantInvite(user_id=guest.id, role=ParticipantRole.AUTHENTICATED_GUEST),
            decision,
            clock=system_clock,
            actor_id=host.id,
        )
        print("Invited guest to the retreat")

    print("Database seeding completed successfully!")

if __name__ == "__main__":
    asyncio.run(seed_data())
