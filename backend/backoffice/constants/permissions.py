"""Closed permission catalog: module -> ordered action verbs.
Extend cautiously; never rename verbs silently. Bump CATALOG_VERSION whenever a
module or action is added so stored groups can be re-validated.
"""
from __future__ import annotations
from typing import Dict, Iterable, List, Mapping, Tuple

CATALOG_VERSION = 1

MODULES = [
    'accounts', 'companies', 'employees', 'safes', 'tickets', 'audit',
    'settings', 'dashboard', 'reports', 'branches', 'leaves',
]

MODULE_ACTIONS: Dict[str, Tuple[str, ...]] = {
    'accounts': ('view', 'add', 'edit', 'delete', 'confirm', 'settlement', 'currency'),
    'companies': ('view', 'add', 'edit', 'delete'),
    'employees': ('view', 'add', 'edit', 'delete'),
    'safes': ('view', 'add', 'edit', 'delete'),
    'tickets': ('view', 'add', 'edit', 'delete'),
    'audit': ('view', 'add', 'edit', 'delete'),
    'settings': ('view', 'edit'),
    'dashboard': ('view',),
    'reports': ('view',),
    'branches': ('view', 'add', 'edit', 'delete'),
    'leaves': ('view', 'add', 'edit', 'delete', 'approve'),
}

SUPER_ADMIN_GROUP_ID = 'super_admin'
SUPER_ADMIN_GROUP_NAME = 'Super Admin'

# Ledger operations may be filed under either module
LEDGER_MODULES = ('tickets', 'accounts')


def is_known(module: str, action: str) -> bool:
    return action in MODULE_ACTIONS.get(module, ())


def full_grants() -> Dict[str, List[str]]:
    return {m: list(MODULE_ACTIONS[m]) for m in MODULES}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for module in MODULES:
        for action in MODULE_ACTIONS[module]:
            codes.append(f"{module}.{action}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()


def catalog_problems(grants: Mapping[str, Iterable[str]]) -> List[str]:
    """Return human readable problems for a grants mapping (empty when valid)."""
    problems: List[str] = []
    if not isinstance(grants, Mapping):
        return ['grants must be an object of module -> actions']
    for module, actions in grants.items():
        if module not in MODULE_ACTIONS:
            problems.append(f"unknown module '{module}'")
            continue
        if isinstance(actions, (str, bytes)) or not isinstance(actions, Iterable):
            problems.append(f"actions for '{module}' must be a list")
            continue
        for action in actions:
            if action not in MODULE_ACTIONS[module]:
                problems.append(f"unknown action '{module}.{action}'")
    return problems


def normalize_grants(grants: Mapping[str, Iterable[str]]) -> Dict[str, List[str]]:
    """Deduplicate and order actions by catalog order; drop empty modules.

    Assumes ``catalog_problems(grants)`` is empty.
    """
    out: Dict[str, List[str]] = {}
    for module in MODULES:
        wanted = set(grants.get(module) or ())
        ordered = [a for a in MODULE_ACTIONS[module] if a in wanted]
        if ordered:
            out[module] = ordered
    return out


# Preset groups seeded by scripts/seed_groups.py (super_admin is created by bootstrap)
GROUP_PRESETS: Dict[str, Dict[str, object]] = {
    'ticketing_agent': {
        'name': 'Ticketing Agent',
        'grants': {
            'tickets': ['view', 'add', 'edit'],
            'companies': ['view'],
            'dashboard': ['view'],
        },
    },
    'accountant': {
        'name': 'Accountant',
        'grants': {
            'accounts': ['view', 'add', 'edit', 'confirm', 'settlement', 'currency'],
            'tickets': ['view'],
            'safes': ['view'],
            'reports': ['view'],
            'dashboard': ['view'],
        },
    },
    'branch_manager': {
        'name': 'Branch Manager',
        'grants': {
            'tickets': ['view', 'add', 'edit', 'delete'],
            'accounts': ['view', 'add', 'edit', 'delete', 'confirm'],
            'companies': ['view', 'add', 'edit'],
            'employees': ['view'],
            'leaves': ['view', 'approve'],
            'reports': ['view'],
            'dashboard': ['view'],
        },
    },
    'auditor': {
        'name': 'Auditor',
        'grants': {
            'tickets': ['view'],
            'accounts': ['view'],
            'audit': ['view', 'edit'],
            'reports': ['view'],
        },
    },
}
