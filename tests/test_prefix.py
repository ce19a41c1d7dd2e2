import os

import retroshelf.prefix as P
from retroshelf.models import EmulatorConfig, MediaItem
from retroshelf.prefix import RuntimeFamily, configure_prefix, detect_runtime_family


def _item(**kw):
    return MediaItem(id="42", title="Half-Life 2", **kw)


def test_proton_first_launch_sets_both_variables(paths):
    item = _item()
    env = {}
    initialized = configure_prefix(item, paths, ["Games", "PC"], env, is_proton=True)

    root = paths.library_root / "Games" / "PC" / "Prefixes" / "42_Half-Life_2"
    assert initialized is False
    assert env["STEAM_COMPAT_DATA_PATH"] == str(root)
    assert env["WINEPREFIX"] == str(root / "pfx")
    assert item.prefix_path == os.path.join("Games", "PC", "Prefixes", "42_Half-Life_2")
    assert (root / "pfx" / "drive_c").is_dir()


def test_second_call_is_stable_and_does_not_duplicate_mappings(paths):
    item = _item()
    first, second = {}, {}
    assert configure_prefix(item, paths, ["PC"], first) is False
    assert configure_prefix(item, paths, ["PC"], second) is True

    assert first["WINEPREFIX"] == second["WINEPREFIX"]
    dosdevices = os.path.join(second["WINEPREFIX"], "dosdevices")
    assert sorted(os.listdir(dosdevices)) == ["c:", "d:"]
    assert os.readlink(os.path.join(dosdevices, "c:")) == "../drive_c"
    d_target = os.path.join(dosdevices, os.readlink(os.path.join(dosdevices, "d:")))
    assert os.path.samefile(d_target, paths.library_root / "Games")


def test_plain_wine_has_no_steam_variable(paths):
    env = {}
    configure_prefix(_item(), paths, [], env)
    assert "STEAM_COMPAT_DATA_PATH" not in env
    assert env["WINEPREFIX"] == str(paths.library_root / "Prefixes" / "42_Half-Life_2")


def test_stored_relative_path_wins_over_generated(paths):
    item = _item(prefix_path="Custom/hl2")
    env = {}
    configure_prefix(item, paths, ["PC"], env)
    assert env["WINEPREFIX"] == str(paths.library_root / "Custom" / "hl2")
    assert item.prefix_path == "Custom/hl2"


def test_umu_uses_parent_of_stored_pfx(paths):
    item = _item(prefix_path="Prefixes/hl2/pfx")
    env = {}
    configure_prefix(item, paths, [], env, is_proton=True, is_umu=True)
    root = str(paths.library_root / "Prefixes" / "hl2")
    assert env["WINEPREFIX"] == root
    assert env["STEAM_COMPAT_DATA_PATH"] == root


def test_proton_keeps_legacy_root_prefix(paths):
    root = paths.library_root / "Prefixes" / "hl2"
    (root / "drive_c").mkdir(parents=True)
    env = {}
    initialized = configure_prefix(_item(prefix_path="Prefixes/hl2"), paths, [], env, is_proton=True)
    assert initialized is True
    assert env["WINEPREFIX"] == str(root)


def test_wine_falls_back_to_initialized_pfx(paths):
    root = paths.library_root / "Prefixes" / "hl2"
    (root / "pfx" / "drive_c").mkdir(parents=True)
    env = {}
    configure_prefix(_item(prefix_path="Prefixes/hl2"), paths, [], env)
    assert env["WINEPREFIX"] == str(root / "pfx")


def test_system_reg_counts_as_initialized(paths):
    root = paths.library_root / "Prefixes" / "hl2"
    root.mkdir(parents=True)
    (root / "system.reg").write_text("WINE REGISTRY", encoding="utf-8")
    assert configure_prefix(_item(prefix_path="Prefixes/hl2"), paths, [], {}) is True


def test_prefix_outside_library_gets_no_d_mapping(paths, tmp_path):
    outside = tmp_path / "elsewhere" / "pfx-root"
    env = {}
    configure_prefix(_item(prefix_path=str(outside)), paths, [], env)
    assert sorted(os.listdir(outside / "dosdevices")) == ["c:"]


def test_existing_mapping_is_not_overwritten(paths):
    root = paths.library_root / "Prefixes" / "hl2"
    (root / "dosdevices").mkdir(parents=True)
    os.symlink("/mnt/cdrom", root / "dosdevices" / "c:")
    configure_prefix(_item(prefix_path="Prefixes/hl2"), paths, [], {})
    assert os.readlink(root / "dosdevices" / "c:") == "/mnt/cdrom"


def test_filesystem_failures_are_not_fatal(paths, monkeypatch):
    def boom(*a, **kw):
        raise OSError("read-only filesystem")

    monkeypatch.setattr(P.os, "symlink", boom)
    env = {}
    assert configure_prefix(_item(), paths, [], env) is False
    assert "WINEPREFIX" in env


def test_runtime_family_detection_order():
    declared = EmulatorConfig(path="/opt/proton/proton", runtime="umu")
    assert detect_runtime_family(declared, {}) == RuntimeFamily.UMU
    wine = EmulatorConfig(path="/usr/bin/wine")
    assert detect_runtime_family(wine, {"PROTONPATH": "GE-Proton9"}) == RuntimeFamily.PROTON
    assert detect_runtime_family(wine, {"GAMEID": "umu-default"}) == RuntimeFamily.UMU
    assert detect_runtime_family(EmulatorConfig(path="/usr/bin/umu-run"), {}) == RuntimeFamily.UMU
    assert detect_runtime_family(EmulatorConfig(path="/opt/GE-Proton9/proton"), {}) == RuntimeFamily.PROTON
    assert detect_runtime_family(wine, {}) == RuntimeFamily.WINE
    assert detect_runtime_family(None, {}) == RuntimeFamily.WINE


def test_compat_data_override_hints_proton():
    wine = EmulatorConfig(path="/usr/bin/wine")
    assert detect_runtime_family(wine, {"STEAM_COMPAT_DATA_PATH": "Compat"}) == RuntimeFamily.PROTON


def test_item_launcher_path_is_checked_before_profile_path():
    wine = EmulatorConfig(path="/usr/bin/wine")
    umu = MediaItem(id="1", title="Game", launcher_path="/opt/umu/umu-run")
    assert detect_runtime_family(wine, {}, umu) == RuntimeFamily.UMU
    assert detect_runtime_family(None, {}, MediaItem(id="2", title="Game")) == RuntimeFamily.WINE
