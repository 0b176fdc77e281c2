"""
Connect Request Service

Consent and settlement state machine turning a lead/trip match into a
disclosed business contact.

    pending --reject--> rejected
    pending --accept--> accepted        (driver side debited)
    pending --accept--> hold            (initiator is the driver and is short of tokens)
    hold    --promote-> accepted        (driver side debited)

Pricing, role and ownership checks all run before any wallet mutation.
Status transitions are conditional updates on the expected status; if a
transition loses a race after its debit went through, the debit is
reversed with a compensating credit.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.config import settings
from core.exceptions import (
    BusinessRuleError,
    ConflictError,
    ForbiddenError,
    InsufficientTokensError,
    NotFoundError,
    NotPricedError,
    ValidationError,
)
from database import CONNECT_REQUESTS, LEADS, TRIPS, serialize
from models import Actor, ConnectRequestStatus, RespondAction, UserRole
from route_service import haversine_distance
from services.distance_band_service import DistanceBandTable
from services.listing_service import build_pagination, normalize_paging
from services.token_wallet_service import TokenWalletService
from services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def lead_distance_km(lead: Dict[str, Any]) -> float:
    """Lead distance in km from its stored meters. A lead without a positive distance cannot be priced."""
    value = (lead.get("distance") or {}).get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise NotPricedError(message=f"Customer request {lead.get('_id')} has no distance to price")
    return value / 1000


def _point_distance_m(a: Optional[dict], b: Optional[dict]) -> Optional[int]:
    a_coords = (a or {}).get("coordinates")
    b_coords = (b or {}).get("coordinates")
    if not a_coords or not b_coords or len(a_coords) != 2 or len(b_coords) != 2:
        return None
    return round(haversine_distance(a_coords[0], a_coords[1], b_coords[0], b_coords[1]))


class ConnectRequestService:

    def __init__(
        self,
        db,
        wallet_service: TokenWalletService,
        lead_tokens: DistanceBandTable,
        directory: UserDirectory
    ):
        self.requests = db[CONNECT_REQUESTS]
        self.leads = db[LEADS]
        self.trips = db[TRIPS]
        self.wallets = wallet_service
        self.lead_tokens = lead_tokens
        self.directory = directory

    # ============================================================
    # LOOKUPS
    # ============================================================

    async def _get_lead(self, lead_id: str) -> Dict[str, Any]:
        lead = await self.leads.find_one({"_id": ObjectId(lead_id), "isActive": True})
        if not lead:
            raise NotFoundError("Customer request (lead)")
        return lead

    async def _get_trip(self, trip_id: str) -> Dict[str, Any]:
        trip = await self.trips.find_one({"_id": ObjectId(trip_id), "isActive": True})
        if not trip:
            raise NotFoundError("Trip")
        return trip

    async def _get_request(self, request_id: str) -> Dict[str, Any]:
        request = await self.requests.find_one({"_id": ObjectId(request_id), "isActive": True})
        if not request:
            raise NotFoundError("Connect request")
        return request

    @staticmethod
    def _require_participant(request: Dict[str, Any], actor: Actor):
        if actor.id not in (request["initiator"], request["recipient"]):
            raise ForbiddenError("Access denied")

    async def _price(self, lead: Dict[str, Any]) -> int:
        return await self.lead_tokens.lookup(lead_distance_km(lead))

    @staticmethod
    def _pair_roles(
        initiator_id: str,
        initiator_role: UserRole,
        recipient_id: str,
        recipient_role: UserRole
    ) -> Tuple[str, str]:
        """Return (driver_id, customer_id) or raise if the roles don't pair."""
        if initiator_role == UserRole.DRIVER and recipient_role == UserRole.CUSTOMER:
            return initiator_id, recipient_id
        if initiator_role == UserRole.CUSTOMER and recipient_role == UserRole.DRIVER:
            return recipient_id, initiator_id
        raise ValidationError("A connect request must pair one driver with one customer")

    @staticmethod
    def _driver_side(request: Dict[str, Any]) -> Optional[str]:
        if request.get("recipientRole") == UserRole.DRIVER.value:
            return "recipient"
        if request.get("initiatorRole") == UserRole.DRIVER.value:
            return "initiator"
        return None

    async def _transition(
        self,
        request: Dict[str, Any],
        expected: ConnectRequestStatus,
        update: Dict[str, Any],
        debited: Optional[Tuple[str, int]] = None,
        actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Apply `update` only if the request is still in `expected` status."""
        updated = await self.requests.find_one_and_update(
            {"_id": request["_id"], "status": expected.value, "isActive": True},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )
        if updated is None:
            if debited:
                driver_id, amount = debited
                logger.warning(
                    f"Connect request {request['_id']} left '{expected.value}' concurrently; "
                    f"reversing debit of {amount} for driver {driver_id}"
                )
                await self.wallets.credit(
                    driver_id, amount,
                    f"Reversal for connect request {request['_id']}",
                    actor_id
                )
            raise BusinessRuleError(f"Connect request is no longer {expected.value}")
        return updated

    # ============================================================
    # OPERATIONS
    # ============================================================

    async def create(
        self,
        actor: Actor,
        recipient_id: str,
        lead_id: str,
        trip_id: str,
        message: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send a connect request pairing a lead with a trip."""
        if actor.id == recipient_id:
            raise ValidationError("Cannot send connect request to yourself")

        recipient = await self.directory.get_user(recipient_id, "Recipient")
        recipient_role = self.directory.resolve_role(recipient)
        driver_id, customer_id = self._pair_roles(actor.id, actor.role, recipient_id, recipient_role)

        lead = await self._get_lead(lead_id)
        trip = await self._get_trip(trip_id)

        if trip.get("tripAddedBy") != driver_id:
            raise ForbiddenError("The trip does not belong to the driver in this request")
        if lead.get("user") != customer_id:
            raise ForbiddenError("The lead does not belong to the customer in this request")

        existing = await self.requests.find_one({
            "initiator": actor.id,
            "recipient": recipient_id,
            "lead": lead_id,
            "trip": trip_id,
            "isActive": True
        })
        if existing:
            raise ConflictError("Connect request already exists")

        tokens_required = await self._price(lead)
        has_sufficient_tokens = await self.wallets.has_sufficient_balance(driver_id, tokens_required)

        now = datetime.now(timezone.utc)
        doc = {
            "initiator": actor.id,
            "recipient": recipient_id,
            "initiatorRole": actor.role.value,
            "recipientRole": recipient_role.value,
            "lead": lead_id,
            "trip": trip_id,
            "message": message,
            "status": ConnectRequestStatus.PENDING.value,
            "recipientAccepted": False,
            "initiatorAccepted": False,
            "tokensRequired": tokens_required,
            "tokensDeducted": 0,
            "hasSufficientTokens": has_sufficient_tokens,
            "contactDetailsShared": False,
            "rejectionReason": None,
            "isActive": True,
            "addedBy": actor.id,
            "createdAt": now,
            "updatedAt": now
        }
        try:
            result = await self.requests.insert_one(doc)
        except DuplicateKeyError:
            raise ConflictError("Connect request already exists")
        doc["_id"] = result.inserted_id

        logger.info(
            f"Connect request {doc['_id']} created: {actor.id} -> {recipient_id} "
            f"(lead {lead_id}, trip {trip_id}, {tokens_required} tokens)"
        )
        return serialize(doc)

    async def respond(
        self,
        request_id: str,
        actor: Actor,
        action: RespondAction,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Recipient accepts or rejects a pending request."""
        request = await self._get_request(request_id)
        if request["recipient"] != actor.id:
            raise ForbiddenError("You can only respond to requests sent to you")
        if request["status"] != ConnectRequestStatus.PENDING.value:
            raise BusinessRuleError("Connect request is no longer pending")

        now = datetime.now(timezone.utc)
        action = RespondAction(action)

        if action == RespondAction.REJECT:
            updated = await self._transition(request, ConnectRequestStatus.PENDING, {
                "status": ConnectRequestStatus.REJECTED.value,
                "recipientAccepted": False,
                "rejectedAt": now,
                "rejectionReason": reason,
                "lastUpdatedBy": actor.id,
                "updatedAt": now
            })
            logger.info(f"Connect request {request_id} rejected by {actor.id}")
            return serialize(updated)

        # Price at acceptance time
        lead = await self._get_lead(request["lead"])
        tokens_required = await self._price(lead)

        update = {
            "recipientAccepted": True,
            "acceptedAt": now,
            "tokensRequired": tokens_required,
            "lastUpdatedBy": actor.id,
            "updatedAt": now
        }
        debited = None
        debit_reason = f"Connect request accepted for lead: {request['lead']}"
        driver_side = self._driver_side(request)

        if driver_side == "recipient":
            # Recipient driver must pay now; acceptance is blocked otherwise
            if tokens_required > 0:
                await self.wallets.debit(actor.id, tokens_required, debit_reason, actor.id)
                debited = (actor.id, tokens_required)
            update.update(self._settled(tokens_required, now))
        elif driver_side == "initiator":
            driver_id = request["initiator"]
            try:
                if tokens_required > 0:
                    await self.wallets.debit(driver_id, tokens_required, debit_reason, actor.id)
                    debited = (driver_id, tokens_required)
                update.update(self._settled(tokens_required, now))
            except InsufficientTokensError:
                update["status"] = ConnectRequestStatus.HOLD.value
                update["hasSufficientTokens"] = False
        else:
            update["status"] = ConnectRequestStatus.ACCEPTED.value

        if update["status"] == ConnectRequestStatus.ACCEPTED.value and request.get("initiatorAccepted"):
            update["contactDetailsShared"] = True
            update["contactDetailsSharedAt"] = now

        updated = await self._transition(
            request, ConnectRequestStatus.PENDING, update, debited=debited, actor_id=actor.id
        )
        logger.info(f"Connect request {request_id} accepted by {actor.id}: status {update['status']}")
        return serialize(updated)

    @staticmethod
    def _settled(tokens: int, now: datetime) -> Dict[str, Any]:
        return {
            "status": ConnectRequestStatus.ACCEPTED.value,
            "tokensDeducted": tokens,
            "deductedAt": now,
            "hasSufficientTokens": True
        }

    async def counter_accept(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        """Initiator confirms after the recipient accepted."""
        request = await self._get_request(request_id)
        if request["initiator"] != actor.id:
            raise ForbiddenError("You can only accept requests you initiated")
        if not request.get("recipientAccepted"):
            raise BusinessRuleError("Recipient has not accepted this request yet")
        if request.get("initiatorAccepted"):
            raise BusinessRuleError("Request already accepted by initiator")

        now = datetime.now(timezone.utc)
        updated = await self.requests.find_one_and_update(
            {"_id": request["_id"], "isActive": True, "initiatorAccepted": False},
            {"$set": {
                "initiatorAccepted": True,
                "initiatorAcceptedAt": now,
                "contactDetailsShared": True,
                "contactDetailsSharedAt": now,
                "lastUpdatedBy": actor.id,
                "updatedAt": now
            }},
            return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise BusinessRuleError("Request already accepted by initiator")

        logger.info(f"Connect request {request_id} counter-accepted by {actor.id}")
        return serialize(updated)

    async def promote_from_hold(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        """Settle a held request once the driver side can pay."""
        request = await self._get_request(request_id)
        self._require_participant(request, actor)
        if request["status"] != ConnectRequestStatus.HOLD.value:
            raise BusinessRuleError("Only requests on hold can be promoted")

        lead = await self._get_lead(request["lead"])
        tokens_required = await self._price(lead)

        driver_side = self._driver_side(request)
        driver_id = request.get(driver_side) if driver_side else None

        now = datetime.now(timezone.utc)
        debited = None
        if driver_id and tokens_required > 0:
            await self.wallets.debit(
                driver_id, tokens_required,
                f"Connect request accepted for lead: {request['lead']}",
                actor.id
            )
            debited = (driver_id, tokens_required)

        update = {
            **self._settled(tokens_required, now),
            "tokensRequired": tokens_required,
            "lastUpdatedBy": actor.id,
            "updatedAt": now
        }
        if request.get("initiatorAccepted"):
            update["contactDetailsShared"] = True
            update["contactDetailsSharedAt"] = now

        updated = await self._transition(
            request, ConnectRequestStatus.HOLD, update, debited=debited, actor_id=actor.id
        )
        logger.info(f"Connect request {request_id} promoted from hold by {actor.id}")
        return serialize(updated)

    async def get_disclosure(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        """
        Counterpart contact details, shown only once the request is accepted
        (settled). contactDetailsShared is not consulted.
        """
        request = await self._get_request(request_id)
        self._require_participant(request, actor)

        if request["status"] != ConnectRequestStatus.ACCEPTED.value:
            return {"show": False, "contact": None}

        counterpart_id = request["recipient"] if actor.id == request["initiator"] else request["initiator"]
        counterpart = await self.directory.get_user(counterpart_id, "Counterpart")
        return {"show": True, "contact": self.directory.contact(counterpart)}

    async def delete(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        """Initiator withdraws a pending request (soft delete)."""
        request = await self._get_request(request_id)
        if request["initiator"] != actor.id:
            raise ForbiddenError("Only the initiator can delete this request")
        if request["status"] != ConnectRequestStatus.PENDING.value:
            raise BusinessRuleError("Only pending connect requests can be deleted")

        now = datetime.now(timezone.utc)
        updated = await self._transition(request, ConnectRequestStatus.PENDING, {
            "isActive": False,
            "deletedBy": actor.id,
            "updatedAt": now
        })
        logger.info(f"Connect request {request_id} deleted by {actor.id}")
        return serialize(updated)

    # ============================================================
    # READS
    # ============================================================

    async def get(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        request = await self._get_request(request_id)
        self._require_participant(request, actor)
        return serialize(request)

    async def list_for_actor(
        self,
        actor: Actor,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Sent, received, or (default) both kinds of requests for the actor."""
        page, limit = normalize_paging(page, limit)
        query: Dict[str, Any] = {"isActive": True}
        if kind == "sent":
            query["initiator"] = actor.id
        elif kind == "received":
            query["recipient"] = actor.id
        else:
            query["$or"] = [{"initiator": actor.id}, {"recipient": actor.id}]
        if status:
            query["status"] = ConnectRequestStatus(status).value

        skip = (page - 1) * limit
        total = await self.requests.count_documents(query)
        cursor = self.requests.find(query).sort([("createdAt", -1), ("_id", -1)])
        requests = await cursor.skip(skip).limit(limit).to_list(limit)
        return {
            "items": [serialize(r) for r in requests],
            "pagination": build_pagination(page, limit, total),
        }

    async def get_verification(self, request_id: str, actor: Actor) -> Dict[str, Any]:
        """Cross-check view of the lead and trip behind a request."""
        request = await self._get_request(request_id)
        self._require_participant(request, actor)

        lead = await self.leads.find_one({"_id": ObjectId(request["lead"])})
        trip = await self.trips.find_one({"_id": ObjectId(request["trip"])})
        if not lead or not trip:
            raise NotFoundError("Customer request or trip details")

        threshold = settings.compatibility_threshold_m
        lead_distance = (lead.get("distance") or {}).get("value") or 0
        trip_distance = (trip.get("distance") or {}).get("value") or 0
        distance_difference = abs(lead_distance - trip_distance)
        distance_compatible = distance_difference <= threshold

        pickup_distance = _point_distance_m(lead.get("pickupLocation"), trip.get("tripStartLocation"))
        dropoff_distance = _point_distance_m(lead.get("dropoffLocation"), trip.get("tripDestination"))

        def _close(d):
            return d is None or d <= threshold

        return {
            "connectRequest": {
                "id": str(request["_id"]),
                "status": request["status"],
                "initiatorAccepted": request.get("initiatorAccepted", False),
                "recipientAccepted": request.get("recipientAccepted", False),
                "message": request.get("message"),
                "createdAt": request.get("createdAt"),
            },
            "customerRequest": serialize(lead),
            "trip": serialize(trip),
            "compatibility": {
                "distance": {
                    "customerRequest": lead_distance,
                    "trip": trip_distance,
                    "difference": distance_difference,
                    "isCompatible": distance_compatible,
                },
                "pickup": {
                    "customerRequest": lead.get("pickupLocation"),
                    "trip": trip.get("tripStartLocation"),
                    "distance": pickup_distance,
                },
                "dropoff": {
                    "customerRequest": lead.get("dropoffLocation"),
                    "trip": trip.get("tripDestination"),
                    "distance": dropoff_distance,
                },
                "overall": distance_compatible and _close(pickup_distance) and _close(dropoff_distance),
            },
            "tokenInfo": {
                "tokensRequired": request.get("tokensRequired", 0),
                "hasSufficientTokens": request.get("hasSufficientTokens", True),
            },
        }
