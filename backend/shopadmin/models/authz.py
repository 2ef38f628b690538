from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, UniqueConstraint, DateTime, Index
from typing import Optional, Dict, Any

from shopadmin.constants.permissions import ROLE_CUSTOMER, WILDCARD_RESOURCE, permission_key
from shopadmin.utils.clock import utcnow

Base = declarative_base()

SOURCE_ROLE = 'role'
SOURCE_INDIVIDUAL = 'individual'


# --- Core Models ---
class Permission(Base):
    __tablename__ = 'permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False, default=WILDCARD_RESOURCE)
    description: Mapped[str] = mapped_column(String(255), default='')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint('module', 'action', 'resource', name='uq_permission_module_action_resource'),)

    @property
    def key(self) -> str:
        return permission_key(self.module, self.action, self.resource)

    def matches(self, module: str, action: Optional[str] = None, resource: str = WILDCARD_RESOURCE) -> bool:
        if not self.is_active or self.module != module:
            return False
        if action is not None and self.action != action:
            return False
        return self.resource in (resource, WILDCARD_RESOURCE)


class Role(Base):
    __tablename__ = 'roles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default='')
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    permissions = relationship('RolePermission', back_populates='role', cascade='all, delete-orphan')

    def can_manage(self, other: 'Role') -> bool:
        """Lower level means more privilege; equal levels cannot manage each other."""
        return self.level < other.level

    @property
    def permission_ids(self):
        return {rp.permission_id for rp in self.permissions}


class RolePermission(Base):
    __tablename__ = 'role_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey('roles.id', ondelete='CASCADE'), nullable=False)
    permission_id: Mapped[int] = mapped_column(ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False)

    role = relationship('Role', back_populates='permissions')
    permission = relationship('Permission')

    __table_args__ = (UniqueConstraint('role_id', 'permission_id', name='uq_role_permission'),)


class User(Base):
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    # Denormalized copy of the active binding's role; written by services.bindings.sync_primary_role
    primary_role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_CUSTOMER, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    bindings = relationship('UserRoleBinding', back_populates='user', foreign_keys='UserRoleBinding.user_id',
                            cascade='all, delete-orphan')

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)


class UserRoleBinding(Base):
    __tablename__ = 'user_role_bindings'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    role_id: Mapped[int] = mapped_column(ForeignKey('roles.id', ondelete='RESTRICT'), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    assigned_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user = relationship('User', back_populates='bindings', foreign_keys=[user_id])
    role = relationship('Role')
    module_access = relationship('BindingModuleAccess', back_populates='binding', cascade='all, delete-orphan')
    permissions = relationship('BindingPermission', back_populates='binding', cascade='all, delete-orphan')

    __table_args__ = (Index('ix_binding_user_active', 'user_id', 'is_active'),)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def module_override(self, module: str) -> Optional[bool]:
        for row in self.module_access:
            if row.module == module:
                return bool(row.has_access)
        return None


class BindingModuleAccess(Base):
    __tablename__ = 'binding_module_access'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    binding_id: Mapped[int] = mapped_column(ForeignKey('user_role_bindings.id', ondelete='CASCADE'), nullable=False)
    module: Mapped[str] = mapped_column(String(32), nullable=False)
    has_access: Mapped[bool] = mapped_column(Boolean, nullable=False)

    binding = relationship('UserRoleBinding', back_populates='module_access')

    __table_args__ = (UniqueConstraint('binding_id', 'module', name='uq_binding_module'),)


class BindingPermission(Base):
    __tablename__ = 'binding_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    binding_id: Mapped[int] = mapped_column(ForeignKey('user_role_bindings.id', ondelete='CASCADE'), nullable=False)
    permission_id: Mapped[int] = mapped_column(ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, default=True)
    restrictions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default=SOURCE_ROLE)

    binding = relationship('UserRoleBinding', back_populates='permissions')
    permission = relationship('Permission')

    __table_args__ = (UniqueConstraint('binding_id', 'permission_id', name='uq_binding_permission'),)
