"""Quién puede pujar: membresía activa y habilitación manual del admin."""
import logging
from datetime import timedelta

from ..errors import AuthorizationError, NotFoundError, ValidationError
from ..models import Membership

log = logging.getLogger("agribid.eligibility")

TRIAL_DAYS = 15
MEMBERSHIP_DAYS = {"SILVER": 30, "GOLD": 180, "DIAMOND": 365}
BIDDER_ROLES = ("buyer",)


def start_trial(repo, user_id, now):
    """Prueba gratuita al registrarse; no hace nada si ya hay una membresía activa."""
    if repo.latest_active_membership(user_id, now) is not None:
        return None
    return repo.add(Membership(
        user_id=user_id,
        membership_type="TRIAL",
        amount=0,
        start_date=now,
        end_date=now + timedelta(days=TRIAL_DAYS),
        status="active",
    ))


def check_can_bid(repo, bidder, now):
    if bidder.is_admin:
        return
    if not bidder.is_eligible_for_bid:
        raise AuthorizationError(
            "No estás habilitado para pujar. Contacta al administrador.",
            reason=bidder.eligible_for_bid_reason,
        )
    if repo.latest_active_membership(bidder.id, now) is None:
        raise AuthorizationError("Necesitas una membresía activa para pujar.", membershipRequired=True)


def set_bid_eligibility(repo, bidder_id, actor_id, eligible, reason=None):
    actor = repo.get_user(actor_id)
    if actor is None or not actor.is_admin:
        raise AuthorizationError("Acceso restringido a administradores.")
    if not isinstance(eligible, bool):
        raise ValidationError("isEligibleForBid debe ser booleano.")

    with repo.transaction():
        bidder = repo.get_user(bidder_id)
        if bidder is None:
            raise NotFoundError("Postor no encontrado.")
        if bidder.role not in BIDDER_ROLES:
            raise ValidationError("El usuario no es un postor.")
        bidder.is_eligible_for_bid = eligible
        bidder.eligible_for_bid_reason = (reason or "").strip() or None
    log.info("eligibility:set bidder=%s eligible=%s by=%s", bidder_id, eligible, actor_id)
    return bidder
