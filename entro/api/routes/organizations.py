from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from entro.api.routes.dependencies import get_current_user_id, get_db, http_error
from entro.api.schemas.schemas import (
    MemberCreate,
    MemberResponse,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationSettingsUpdate,
    OrderResponse,
    PaymentProviderConnectionRequest,
)
from entro.application.order_service import OrderService
from entro.application.organization_service import OrganizationService
from entro.domain.exceptions import EntroError
from entro.domain.state_machine import OrderStatus

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
def create_organization(
    request: OrganizationCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    service = OrganizationService(db)
    try:
        organization = service.create_organization(
            user_id=user_id,
            name=request.name,
            slug=request.slug,
            email=request.email,
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrganizationResponse.model_validate(organization)


@router.get("", response_model=list[OrganizationResponse])
def list_organizations(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    organizations = OrganizationService(db).list_for_user(user_id)
    return [OrganizationResponse.model_validate(item) for item in organizations]


@router.get("/{organization_id}", response_model=OrganizationResponse)
def get_organization(
    organization_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        organization = OrganizationService(db).get_organization(organization_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrganizationResponse.model_validate(organization)


@router.patch("/{organization_id}/settings", response_model=OrganizationResponse)
def update_settings(
    organization_id: str,
    request: OrganizationSettingsUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        organization = OrganizationService(db).update_settings(
            organization_id,
            user_id,
            payment_timeout_minutes=request.payment_timeout_minutes,
            branding_removed=request.branding_removed,
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrganizationResponse.model_validate(organization)


@router.put("/{organization_id}/payment-provider", response_model=OrganizationResponse)
def set_payment_provider_connection(
    organization_id: str,
    request: PaymentProviderConnectionRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        organization = OrganizationService(db).set_payment_provider_connected(
            organization_id, user_id, request.connected
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return OrganizationResponse.model_validate(organization)


@router.get("/{organization_id}/members", response_model=list[MemberResponse])
def list_members(
    organization_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        members = OrganizationService(db).list_members(organization_id, user_id)
    except EntroError as exc:
        raise http_error(exc) from exc
    return [MemberResponse.model_validate(item) for item in members]


@router.post(
    "/{organization_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_member(
    organization_id: str,
    request: MemberCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        membership = OrganizationService(db).add_member(
            organization_id, user_id, request.user_id, request.role
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return MemberResponse.model_validate(membership)


@router.patch("/{organization_id}/members/{member_user_id}", response_model=MemberResponse)
def update_member_role(
    organization_id: str,
    member_user_id: str,
    request: MemberRoleUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        membership = OrganizationService(db).update_member_role(
            organization_id, user_id, member_user_id, request.role
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return MemberResponse.model_validate(membership)


@router.delete(
    "/{organization_id}/members/{member_user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_member(
    organization_id: str,
    member_user_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        OrganizationService(db).remove_member(organization_id, user_id, member_user_id)
    except EntroError as exc:
        raise http_error(exc) from exc


@router.get("/{organization_id}/orders", response_model=list[OrderResponse])
def list_orders(
    organization_id: str,
    status_filter: OrderStatus | None = None,
    event_id: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        orders = OrderService(db).list_orders(
            organization_id,
            user_id,
            status=status_filter,
            event_id=event_id,
            search=search,
            limit=limit,
            offset=offset,
        )
    except EntroError as exc:
        raise http_error(exc) from exc
    return [OrderResponse.model_validate(order) for order in orders]
