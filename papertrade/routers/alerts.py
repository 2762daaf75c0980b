"""Price alert endpoints - requires login.

The ``/alerts/by-id/...`` routes are declared before the
``/alerts/{symbol}/...`` ones so "by-id" is never taken for a symbol.
"""

from fastapi import APIRouter, Depends, Form, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from papertrade.auth import CurrentUser, get_current_user
from papertrade.database import get_session
from papertrade.deps import get_events
from papertrade.events import ALERTS_UPDATED, EventBus
from papertrade.htmx import set_hx_trigger
from papertrade.schemas import (
    AlertGroupsResponse,
    AlertListResponse,
    AlertResponse,
    AlertTriggerResponse,
)
from papertrade.services import alerts as alerts_service

router = APIRouter()


@router.get("/list", response_model=AlertGroupsResponse, summary="My alerts by symbol")
async def list_alerts_grouped(
    status_filter: str | None = Query(
        default=None, alias="status", description="all, pending or triggered"
    ),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> AlertGroupsResponse:
    if status_filter in (None, "", "all"):
        grouped = await alerts_service.list_alerts_grouped(session, user.user_id)
    else:
        grouped = {}
        for alert in await alerts_service.list_alerts(session, user.user_id, status_filter):
            grouped.setdefault(alert.symbol, []).append(alert)
        grouped = dict(sorted(grouped.items()))
    return AlertGroupsResponse(
        groups={
            symbol: [AlertResponse.model_validate(a) for a in alerts]
            for symbol, alerts in grouped.items()
        }
    )


@router.post(
    "/by-id/{alert_id}/delete",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an alert",
)
async def delete_alert(
    alert_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    events: EventBus = Depends(get_events),
) -> Response:
    await alerts_service.delete_alert(session, events, user.user_id, alert_id)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    set_hx_trigger(response, ALERTS_UPDATED)
    return response


@router.post(
    "/by-id/{alert_id}/trigger",
    response_model=AlertTriggerResponse,
    summary="Trigger an alert now",
)
async def trigger_alert(
    alert_id: str,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    events: EventBus = Depends(get_events),
) -> AlertTriggerResponse:
    """Flag an alert as triggered. The alert is kept; triggering twice is a no-op."""
    result = await alerts_service.trigger_alert(session, events, user.user_id, alert_id)
    set_hx_trigger(response, ALERTS_UPDATED)
    return AlertTriggerResponse(
        alert=AlertResponse.model_validate(result.alert),
        triggered_now=result.triggered_now,
        message=result.message,
    )


@router.get("/{symbol}/list", response_model=AlertListResponse, summary="My alerts on a symbol")
async def list_symbol_alerts(
    symbol: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> AlertListResponse:
    alerts = await alerts_service.list_symbol_alerts(session, user.user_id, symbol)
    return AlertListResponse(alerts=[AlertResponse.model_validate(a) for a in alerts])


@router.post(
    "/{symbol}",
    response_model=AlertResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an alert",
)
async def create_alert(
    symbol: str,
    response: Response,
    condition: str = Form(""),
    target_price: str = Form(""),
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    events: EventBus = Depends(get_events),
) -> AlertResponse:
    """Create an alert that fires once the price goes ``above``/``below`` the target."""
    alert = await alerts_service.create_alert(
        session, events, user.user_id, symbol, condition, target_price
    )
    set_hx_trigger(response, ALERTS_UPDATED)
    return AlertResponse.model_validate(alert)


@router.post(
    "/{symbol}/{alert_id}/delete",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an alert on a symbol",
)
async def delete_symbol_alert(
    symbol: str,
    alert_id: str,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    events: EventBus = Depends(get_events),
) -> Response:
    await alerts_service.delete_alert(session, events, user.user_id, alert_id, symbol=symbol)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    set_hx_trigger(response, ALERTS_UPDATED)
    return response
