import importlib.util, json, pathlib
from sqlalchemy import select
from backoffice import get_db
from backoffice.constants.permissions import GROUP_PRESETS
from backoffice.models.authz import PermissionGroup

SCRIPT = pathlib.Path(__file__).resolve().parents[1] / 'scripts' / 'seed_groups.py'


def _load_script():
    spec = importlib.util.spec_from_file_location('seed_groups', SCRIPT)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _group_ids():
    return set(get_db().execute(select(PermissionGroup.id)).scalars().all())


def test_seed_is_idempotent(app_instance, capsys):
    seed = _load_script()
    assert seed.main([], app=app_instance) == 0
    assert _group_ids() == set(GROUP_PRESETS)
    assert seed.main(['--show-groups'], app=app_instance) == 0
    out = capsys.readouterr().out
    assert '[DONE] Groups created: 0' in out
    assert 'Group Grant Summary' in out
    assert 'super_admin' not in _group_ids()


def test_dry_run_writes_nothing(app_instance, capsys):
    seed = _load_script()
    assert seed.main(['--dry-run'], app=app_instance) == 0
    assert f'Groups would create: {len(GROUP_PRESETS)}' in capsys.readouterr().out
    assert _group_ids() == set()


def test_validate_flags_unknown_grants(app_instance, capsys):
    session = get_db()
    session.add(PermissionGroup(id='legacy', name='Legacy', grants={'vouchers': ['print']}))
    session.commit()
    seed = _load_script()
    assert seed.main(['--validate'], app=app_instance) == 2
    out = capsys.readouterr().out
    assert "Group 'legacy': unknown module 'vouchers'" in out
    # validation failure rolls back the preset inserts too
    assert _group_ids() == {'legacy'}


def test_export_json_to_file(app_instance, tmp_path):
    seed = _load_script()
    target = tmp_path / 'groups.json'
    assert seed.main(['--export-json', str(target)], app=app_instance) == 0
    payload = json.loads(target.read_text(encoding='utf-8'))
    assert set(payload['groups']) == set(GROUP_PRESETS)
    assert payload['meta']['dry_run'] is False
    assert len(payload['meta']['groups_checksum_sha256']) == 64
