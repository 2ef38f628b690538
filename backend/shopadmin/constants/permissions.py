"""Central enum-like definitions to avoid typos in module/action/role strings.
Extend cautiously; never rename a module or action silently, the permission rows reference them verbatim.
"""
from __future__ import annotations
from typing import Dict, List, Tuple

MODULES = [
    'dashboard', 'users', 'products', 'inventory', 'orders', 'shipping', 'coupons', 'support',
    'categories', 'filters', 'banners', 'testimonials', 'admin_management', 'settings',
    'analytics', 'notifications',
]

ACTIONS = ['read', 'edit', 'delete', 'create_assets', 'export']

WILDCARD_RESOURCE = '*'

# Read-only modules: no point seeding write actions for them
MODULE_ACTIONS: Dict[str, List[str]] = {m: list(ACTIONS) for m in MODULES}
MODULE_ACTIONS['dashboard'] = ['read', 'export']
MODULE_ACTIONS['analytics'] = ['read', 'export']

ROLE_SUPER_ADMIN = 'super_admin'
ROLE_ADMIN = 'admin'
ROLE_SUB_ADMIN = 'sub_admin'
ROLE_SELLER = 'seller'
ROLE_CUSTOMER = 'customer'

ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_SUB_ADMIN)

ROLE_DEFINITIONS: Dict[str, Dict[str, object]] = {
    ROLE_SUPER_ADMIN: {
        'display_name': 'Super Admin',
        'description': 'Full system access with all permissions',
        'level': 1,
    },
    ROLE_ADMIN: {
        'display_name': 'Admin',
        'description': 'Manages own catalogue, orders and customers',
        'level': 2,
    },
    ROLE_SUB_ADMIN: {
        'display_name': 'Sub Admin',
        'description': 'Limited support and read access',
        'level': 3,
    },
}


def permission_key(module: str, action: str, resource: str = WILDCARD_RESOURCE) -> str:
    return f"{module}:{action}:{resource}"


def build_permission_specs() -> List[Tuple[str, str]]:
    specs: List[Tuple[str, str]] = []
    for module, actions in MODULE_ACTIONS.items():
        for act in actions:
            specs.append((module, act))
    return specs

ALL_PERMISSION_SPECS = build_permission_specs()

# Seeded into newly created roles; super_admin bypasses checks so carries none
ROLE_PRESETS: Dict[str, List[str]] = {
    ROLE_SUPER_ADMIN: [],
    ROLE_ADMIN: [
        'dashboard:read',
        'products:read', 'products:edit', 'products:delete', 'products:create_assets', 'products:export',
        'inventory:read', 'inventory:edit',
        'orders:read', 'orders:edit', 'orders:export',
        'categories:read',
        'users:read',
        'coupons:read', 'coupons:edit',
        'analytics:read',
        'notifications:read', 'notifications:edit',
    ],
    ROLE_SUB_ADMIN: [
        'dashboard:read',
        'products:read',
        'orders:read',
        'users:read',
        'support:read', 'support:edit',
        'notifications:read',
    ],
}
