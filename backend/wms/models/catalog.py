from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z


LOCATION_TYPES = ("warehouse", "zone", "aisle", "rack", "shelf", "bin")


class Category(db.Model):
    """
    Product category tree.

    Names are unique among siblings (same parent_id). Root categories have
    parent_id NULL; uniqueness among roots is enforced in the service layer
    because NULLs never collide in a UNIQUE index.
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("parent_id", "name", name="uq_categories_parent_name"),
        db.Index("ix_categories_active_sort", "is_active", "sort_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    image_url = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r} parent_id={self.parent_id}>"

    @property
    def full_path(self) -> str:
        names = []
        node = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return " > ".join(reversed(names))

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_id": self.parent_id,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "full_path": self.full_path,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_children:
            children = sorted(self.children, key=lambda c: (c.sort_order, c.name))
            data["children"] = [c.to_dict(include_children=True) for c in children]
        return data


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_brands_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    logo_url = db.Column(db.String(500), nullable=True)
    website = db.Column(db.String(255), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Brand id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "logo_url": self.logo_url,
            "website": self.website,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Warehouse(db.Model):
    """
    Physical warehouse.

    MAIN WAREHOUSE: at most one row has is_main=True; set_main clears the flag
    on every other row in the same transaction.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(120), nullable=True)
    country = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    manager_name = db.Column(db.String(255), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_main = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postal_code": self.postal_code,
            "phone": self.phone,
            "email": self.email,
            "manager_name": self.manager_name,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "is_main": self.is_main,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    Storage location inside a warehouse (zone / aisle / rack / shelf / bin).

    Locations nest through parent_id. full_code joins the codes from the root
    down ("A-01-03"), full_name joins the names with " > ".
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("warehouse_id", "code", name="uq_locations_warehouse_code"),
        db.Index("ix_locations_warehouse_type", "warehouse_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="bin")
    description = db.Column(db.Text, nullable=True)
    aisle = db.Column(db.String(32), nullable=True)
    rack = db.Column(db.String(32), nullable=True)
    shelf = db.Column(db.String(32), nullable=True)
    bin = db.Column(db.String(32), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse", backref=db.backref("locations", lazy=True))
    parent = db.relationship("Location", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r} warehouse_id={self.warehouse_id}>"

    def _lineage(self) -> list["Location"]:
        chain = []
        node = self
        while node is not None:
            chain.append(node)
            node = node.parent
        return list(reversed(chain))

    @property
    def full_code(self) -> str:
        return "-".join(loc.code for loc in self._lineage())

    @property
    def full_name(self) -> str:
        return " > ".join(loc.name for loc in self._lineage())

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "code": self.code,
            "type": self.type,
            "description": self.description,
            "aisle": self.aisle,
            "rack": self.rack,
            "shelf": self.shelf,
            "bin": self.bin,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "full_code": self.full_code,
            "full_name": self.full_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_children:
            data["children"] = [c.to_dict(include_children=True) for c in self.children]
        return data
