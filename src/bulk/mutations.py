"""
Bulk mutations.

A mutation is a pure transformation of one loaded entity: it returns an
updated copy plus a {field: {"from", "to"}} change payload, or raises.
Nothing here touches a store.

Mutations arrive as JSON and are parsed through the `kind` discriminator:

    {"kind": "status_change", "status": "banned", "reason": "chargebacks"}
"""

from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from src.domain import orders as order_rules
from src.domain.errors import InvariantViolation, ValidationError
from src.domain.flags import (
    CUSTOMER_STATUS_FLAGS,
    PRODUCT_STATUS_FLAGS,
    add_flag,
    default_flag_reason,
    resolve_flag,
)
from src.domain.models import (
    Customer,
    CustomerStatus,
    EntityType,
    Order,
    OrderStatus,
    Product,
    ProductStatus,
    Severity,
)

ALL_ENTITIES: FrozenSet[EntityType] = frozenset(EntityType)

STATUS_ENUMS = {
    EntityType.ORDER: OrderStatus,
    EntityType.CUSTOMER: CustomerStatus,
    EntityType.PRODUCT: ProductStatus,
}

# Auto-flag tables and the label used in default flag reasons
STATUS_FLAG_TABLES = {
    EntityType.CUSTOMER: (CUSTOMER_STATUS_FLAGS, "Account"),
    EntityType.PRODUCT: (PRODUCT_STATUS_FLAGS, "Product"),
}

# Dotted paths a field update may touch
UPDATABLE_FIELDS: Dict[EntityType, FrozenSet[str]] = {
    EntityType.ORDER: frozenset({
        "payment_method",
        "status_reason",
        "shipping_address.street",
        "shipping_address.city",
        "shipping_address.state",
        "shipping_address.pincode",
        "shipping_address.country",
    }),
    EntityType.CUSTOMER: frozenset({"name", "email", "phone"}),
    EntityType.PRODUCT: frozenset({
        "name",
        "category",
        "subcategory",
        "pricing.base_price",
        "pricing.sale_price",
        "pricing.tax_rate",
        "inventory.stock",
        "inventory.reserved",
        "inventory.low_stock_threshold",
    }),
}

Entity = Union[Order, Customer, Product]
Changes = Dict[str, Dict[str, Any]]


def _value(v: Any) -> Any:
    return v.value if hasattr(v, "value") else v


def _change(before: Any, after: Any) -> Dict[str, Any]:
    return {"from": _value(before), "to": _value(after)}


def _dotted_get(data: Dict[str, Any], path: str) -> Any:
    for part in path.split("."):
        data = data[part]
    return data


def _dotted_set(data: Dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    for part in parents:
        data = data[part]
    data[leaf] = value


class BaseMutation(BaseModel):
    """Common behaviour: applicability checks and audit naming"""
    model_config = ConfigDict(frozen=True)

    verb: ClassVar[str] = "MUTATION"
    applies_to: ClassVar[FrozenSet[EntityType]] = ALL_ENTITIES

    def action_for(self, entity_type: EntityType) -> str:
        return f"{entity_type.value.upper()}_{self.verb}"

    def validate_for(self, entity_type: EntityType) -> None:
        """Reject before any item is touched"""
        if entity_type not in self.applies_to:
            raise ValidationError(
                f"{self.kind} does not apply to {entity_type.value} records",
                {"kind": self.kind, "entity_type": entity_type.value},
            )

    def severity_for(self, entity_type: EntityType) -> Severity:
        return Severity.LOW

    def apply(
        self,
        entity: Entity,
        entity_type: EntityType,
        actor: str,
        now: datetime,
    ) -> Tuple[Entity, Changes]:
        raise NotImplementedError


class StatusChange(BaseMutation):
    """Move an entity to a new status; destructive targets attach a flag"""
    kind: Literal["status_change"] = "status_change"
    status: str
    reason: Optional[str] = None

    verb: ClassVar[str] = "STATUS_CHANGE"

    def validate_for(self, entity_type: EntityType) -> None:
        super().validate_for(entity_type)
        allowed = [member.value for member in STATUS_ENUMS[entity_type]]
        if self.status not in allowed:
            raise ValidationError(
                f"'{self.status}' is not a {entity_type.value} status, expected one of {', '.join(allowed)}",
                {"status": self.status},
            )

    def severity_for(self, entity_type: EntityType) -> Severity:
        if entity_type == EntityType.ORDER:
            return Severity.MEDIUM if self.status == OrderStatus.CANCELLED.value else Severity.LOW
        table, _ = STATUS_FLAG_TABLES[entity_type]
        target = STATUS_ENUMS[entity_type](self.status)
        return table[target][1] if target in table else Severity.LOW

    def apply(self, entity, entity_type, actor, now):
        target = STATUS_ENUMS[entity_type](self.status)
        before = entity.status

        if entity_type == EntityType.ORDER:
            updated = order_rules.change_status(entity, target, actor=actor, reason=self.reason, now=now)
            return updated, {"status": _change(before, updated.status)}

        if before == target:
            raise InvariantViolation(
                f"{entity_type.value.title()} is already {target.value}",
                {"status": target.value},
            )

        updated = entity.model_copy(update={"status": target, "updated_by": actor, "updated_at": now})
        changes: Changes = {"status": _change(before, target)}

        table, label = STATUS_FLAG_TABLES[entity_type]
        if target in table:
            flag_type, severity = table[target]
            reason = self.reason or default_flag_reason(label, target.value)
            updated = add_flag(updated, flag_type, reason, severity=severity, actor=actor, now=now)
            changes["flags"] = {"from": None, "to": {"type": flag_type, "severity": severity.value, "reason": reason}}
        return updated, changes


class FieldUpdate(BaseMutation):
    """Set whitelisted fields; the result is re-validated as a whole record"""
    kind: Literal["field_update"] = "field_update"
    fields: Dict[str, Any]

    verb: ClassVar[str] = "FIELD_UPDATE"

    def validate_for(self, entity_type: EntityType) -> None:
        super().validate_for(entity_type)
        if not self.fields:
            raise ValidationError("Field update needs at least one field")
        unknown = sorted(set(self.fields) - UPDATABLE_FIELDS[entity_type])
        if unknown:
            raise ValidationError(
                f"Fields not updatable on {entity_type.value}: {', '.join(unknown)}",
                {"fields": unknown},
            )

    def apply(self, entity, entity_type, actor, now):
        data = entity.model_dump()
        changes: Changes = {}
        for path, value in sorted(self.fields.items()):
            before = _dotted_get(data, path)
            if before != value:
                changes[path] = _change(before, value)
            _dotted_set(data, path, value)

        if not changes:
            raise InvariantViolation("Field update changes nothing", {"fields": sorted(self.fields)})

        data["updated_by"] = actor
        data["updated_at"] = now
        try:
            updated = type(entity).model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid field values: {e.errors()[0]['msg']}",
                {"errors": [error["msg"] for error in e.errors()]},
            ) from e
        return updated, changes


class AddFlag(BaseMutation):
    kind: Literal["add_flag"] = "add_flag"
    type: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    severity: Severity = Severity.MEDIUM

    verb: ClassVar[str] = "FLAG_ADDED"

    def severity_for(self, entity_type: EntityType) -> Severity:
        return self.severity

    def apply(self, entity, entity_type, actor, now):
        updated = add_flag(entity, self.type, self.reason, severity=self.severity, actor=actor, now=now)
        return updated, {
            "flags": {"from": None, "to": {"type": self.type, "severity": self.severity.value, "reason": self.reason}}
        }


class ResolveFlag(BaseMutation):
    kind: Literal["resolve_flag"] = "resolve_flag"
    index: int = Field(ge=0)
    notes: Optional[str] = None

    verb: ClassVar[str] = "FLAG_RESOLVED"

    def apply(self, entity, entity_type, actor, now):
        updated = resolve_flag(entity, self.index, actor=actor, notes=self.notes, now=now)
        return updated, {f"flags.{self.index}.resolved": _change(False, True)}


class SoftDelete(BaseMutation):
    kind: Literal["soft_delete"] = "soft_delete"
    reason: Optional[str] = None

    verb: ClassVar[str] = "SOFT_DELETE"

    def severity_for(self, entity_type: EntityType) -> Severity:
        return Severity.MEDIUM

    def apply(self, entity, entity_type, actor, now):
        if entity.deleted_at is not None:
            raise InvariantViolation(f"{entity_type.value.title()} is already deleted")
        updated = entity.model_copy(update={"deleted_at": now, "updated_by": actor, "updated_at": now})
        return updated, {"deleted_at": _change(None, now.isoformat())}


class CancelOrder(BaseMutation):
    kind: Literal["cancel_order"] = "cancel_order"
    reason: Optional[str] = None

    verb: ClassVar[str] = "CANCELLED"
    applies_to: ClassVar[FrozenSet[EntityType]] = frozenset({EntityType.ORDER})

    def severity_for(self, entity_type: EntityType) -> Severity:
        return Severity.MEDIUM

    def apply(self, entity, entity_type, actor, now):
        updated = order_rules.cancel_order(entity, actor=actor, reason=self.reason, now=now)
        return updated, {"status": _change(entity.status, updated.status)}


class RefundOrder(BaseMutation):
    kind: Literal["refund_order"] = "refund_order"
    amount: Optional[float] = None
    reason: Optional[str] = None
    refund_type: Optional[Literal["full", "partial"]] = None

    verb: ClassVar[str] = "REFUNDED"
    applies_to: ClassVar[FrozenSet[EntityType]] = frozenset({EntityType.ORDER})

    def severity_for(self, entity_type: EntityType) -> Severity:
        return Severity.HIGH

    def apply(self, entity, entity_type, actor, now):
        updated = order_rules.refund_order(
            entity,
            amount=self.amount,
            actor=actor,
            reason=self.reason,
            refund_type=self.refund_type,
            now=now,
        )
        return updated, {
            "payment_status": _change(entity.payment_status, updated.payment_status),
            "status": _change(entity.status, updated.status),
            "refund_amount": _change(None, updated.refund_info.amount),
        }


Mutation = Annotated[
    Union[StatusChange, FieldUpdate, AddFlag, ResolveFlag, SoftDelete, CancelOrder, RefundOrder],
    Field(discriminator="kind"),
]

MutationAdapter: TypeAdapter = TypeAdapter(Mutation)


def parse_mutation(payload: Dict[str, Any]) -> BaseMutation:
    """
    Raises:
        ValidationError: unknown kind or bad arguments
    """
    try:
        return MutationAdapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid mutation: {e.errors()[0]['msg']}",
            {"errors": [error["msg"] for error in e.errors()]},
        ) from e
