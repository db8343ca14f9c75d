"""
FastAPI dependency wiring for call handling services.

All services built for one request share that request's database session.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.calls.lifecycle import CallLifecycleManager, get_member_locks
from outreach.config import get_settings
from outreach.dialogue.flow import FlowConfig, FlowController, get_call_locks
from outreach.dialogue.state import CallStateStore, get_call_state_store
from outreach.shared.database import get_db_session
from outreach.telephony.config import TelephonyConfig
from outreach.telephony.factory import get_telephony_config, get_telephony_provider
from outreach.telephony.interface import TelephonyProvider
from outreach.telephony.webhooks.dedup import ProcessedEventRegistry, get_event_registry
from outreach.telephony.webhooks.handler import EventRouter


def get_flow_config() -> FlowConfig:
    return FlowConfig.from_settings(get_settings())


def get_flow_controller(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    call_states: Annotated[CallStateStore, Depends(get_call_state_store)],
    config: Annotated[FlowConfig, Depends(get_flow_config)],
) -> FlowController:
    return FlowController(
        session=session,
        provider=provider,
        call_states=call_states,
        config=config,
        call_locks=get_call_locks(),
    )


def get_lifecycle_manager(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    flow: Annotated[FlowController, Depends(get_flow_controller)],
    telephony_config: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> CallLifecycleManager:
    return CallLifecycleManager(
        session=session,
        provider=provider,
        flow=flow,
        telephony_config=telephony_config,
        member_locks=get_member_locks(),
    )


def get_event_router(
    registry: Annotated[ProcessedEventRegistry, Depends(get_event_registry)],
    lifecycle: Annotated[CallLifecycleManager, Depends(get_lifecycle_manager)],
    flow: Annotated[FlowController, Depends(get_flow_controller)],
) -> EventRouter:
    return EventRouter(registry=registry, lifecycle=lifecycle, flow=flow)
