from __future__ import annotations

from ..extensions import db
from procure.time_utils import to_utc_z


class Budget(db.Model):
    """
    Yearly spending ceiling for one department.

    The row is a bounded counter split into three buckets:
    - total_cents:    allocated ceiling
    - reserved_cents: earmarked by requests still in approval
    - used_cents:     committed by fully approved requests

    INVARIANT: reserved >= 0, used >= 0, reserved + used <= total.

    The buckets are only moved by budget_service.reserve / commit / release,
    each a single conditional UPDATE, so the invariant is enforced by the
    database under concurrent requests. The CHECK constraints back it up.
    """
    __tablename__ = "budgets"
    __table_args__ = (
        db.UniqueConstraint("department_id", "year", name="uq_budgets_department_year"),
        db.CheckConstraint("reserved_cents >= 0", name="ck_budgets_reserved_non_negative"),
        db.CheckConstraint("used_cents >= 0", name="ck_budgets_used_non_negative"),
        db.CheckConstraint("reserved_cents + used_cents <= total_cents", name="ck_budgets_within_total"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False, index=True)

    total_cents = db.Column(db.BigInteger, nullable=False, default=0)
    used_cents = db.Column(db.BigInteger, nullable=False, default=0)
    reserved_cents = db.Column(db.BigInteger, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    department = db.relationship("Department", backref=db.backref("budgets", lazy=True))

    @property
    def available_cents(self) -> int:
        return self.total_cents - self.used_cents - self.reserved_cents

    @property
    def usage_percentage(self) -> float:
        if not self.total_cents:
            return 0.0
        return round(self.used_cents * 100 / self.total_cents, 2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "year": self.year,
            "total_cents": self.total_cents,
            "used_cents": self.used_cents,
            "reserved_cents": self.reserved_cents,
            "available_cents": self.available_cents,
            "usage_percentage": self.usage_percentage,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
