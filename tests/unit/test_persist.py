"""Unit tests for the snapshot store: save, restore, export, import."""

import io
import os
import tarfile

import pytest

from rtr.core.audit import AuditEventType
from rtr.core.exceptions import StoreError
from rtr.services.persist import PersistService


@pytest.fixture
def persist(ctx, kernel, audit, locks):
    return PersistService(ctx, kernel, audit=audit, locks=locks)


def _archive(entries) -> bytes:
    """Build a tar.gz from (TarInfo, bytes or None) pairs."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for info, data in entries:
            if data is None:
                tar.addfile(info)
            else:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _file(name: str, data: bytes, mode: int = 0o644):
    info = tarfile.TarInfo(name)
    info.mode = mode
    return info, data


class TestSave:
    """Tests for snapshotting into the store."""

    def test_save_firewall(self, persist, kernel, store_dir):
        kernel.add("filter", "INPUT", "-i lo -j ACCEPT")
        persist.save_firewall()
        dump = (store_dir / "iptables" / "rules.v4").read_text()
        assert "*filter" in dump
        assert "-A INPUT -i lo -j ACCEPT" in dump

    def test_save_routes_skips_kernel_routes(self, persist, kernel, store_dir):
        kernel.routes["main"].append("10.8.0.0/16 via 10.0.0.2 dev eth0 proto static")
        kernel.routes["100"] = ["10.9.0.0/16 dev wg0 scope link", "unreachable 10.66.0.0/16"]

        assert persist.save_routes() == 4

        main = (store_dir / "routes" / "main.conf").read_text().splitlines()
        assert main == [
            "default via 10.0.0.1 dev eth0 metric 100",
            "10.8.0.0/16 via 10.0.0.2 dev eth0",
        ]
        table_100 = (store_dir / "routes" / "100.conf").read_text().splitlines()
        assert table_100 == ["10.9.0.0/16 dev wg0", "unreachable 10.66.0.0/16"]
        assert not (store_dir / "routes" / "local.conf").exists()

    def test_save_routes_skips_multipath(self, persist, kernel, store_dir):
        kernel.routes["main"].append(
            "10.20.0.0/16 proto static metric 10\n"
            "\tnexthop via 10.0.0.1 dev eth0 weight 1\n"
            "\tnexthop via 10.0.1.1 dev eth1 weight 1"
        )

        assert persist.save_routes() == 1

        main = (store_dir / "routes" / "main.conf").read_text().splitlines()
        assert main == ["default via 10.0.0.1 dev eth0 metric 100"]

    def test_save_routes_removes_stale_tables(self, persist, kernel, store_dir):
        kernel.routes["100"] = ["10.9.0.0/16 dev wg0"]
        persist.save_routes()
        assert (store_dir / "routes" / "100.conf").exists()

        kernel.routes["100"] = []
        persist.save_routes()
        assert not (store_dir / "routes" / "100.conf").exists()
        assert (store_dir / "routes" / "main.conf").exists()

    def test_save_rules_skips_reserved(self, persist, kernel, store_dir):
        kernel.ip_rules.append((1000, "from 10.0.0.0/24 lookup 100"))
        kernel.ip_rules.append((1100, "not from all fwmark 0x1 lookup vpn"))

        assert persist.save_rules() == 2

        lines = (store_dir / "rules" / "ip-rules.conf").read_text().splitlines()
        assert lines == [
            "priority 1000 from 10.0.0.0/24 lookup 100",
            "priority 1100 not fwmark 0x1 lookup vpn",
        ]

    def test_save_all_audited(self, persist, audit):
        persist.save_all()
        events = [c.args[0] for c in audit.log_success.call_args_list]
        assert events == [AuditEventType.SNAPSHOT_SAVE] * 3

    def test_dry_run_writes_nothing(self, persist, ctx, store_dir):
        ctx.dry_run = True
        persist.save_all()
        assert not store_dir.exists()


class TestRestore:
    """Tests for replaying the store onto the kernel."""

    def test_restore_firewall(self, persist, kernel, store_dir):
        (store_dir / "iptables").mkdir(parents=True)
        (store_dir / "iptables" / "rules.v4").write_text("*filter\nCOMMIT\n")
        result = persist.restore_firewall()
        assert result.ok and result.applied == 1
        assert kernel.restored == ["*filter\nCOMMIT\n"]

    def test_restore_firewall_missing_file_skipped(self, persist, kernel):
        result = persist.restore_firewall()
        assert result.skipped
        assert kernel.calls == []

    def test_restore_routes_adds_table_suffix(self, persist, kernel, store_dir):
        routes = store_dir / "routes"
        routes.mkdir(parents=True)
        (routes / "main.conf").write_text("# static\n\n10.8.0.0/16 via 10.0.0.2 dev eth0\n")
        (routes / "100.conf").write_text("10.9.0.0/16 dev wg0\n")

        result = persist.restore_routes()

        assert result.applied == 2
        assert ["ip", "route", "add", "10.9.0.0/16", "dev", "wg0", "table", "100"] in kernel.calls
        assert ["ip", "route", "add", "10.8.0.0/16", "via", "10.0.0.2", "dev", "eth0"] in kernel.calls

    def test_restore_routes_counts_existing(self, persist, kernel, store_dir):
        routes = store_dir / "routes"
        routes.mkdir(parents=True)
        (routes / "main.conf").write_text("default via 10.0.0.1 dev eth0 metric 100\n")

        result = persist.restore_routes()

        assert result.ok
        assert result.applied == 0
        assert result.existing == 1

    def test_restore_routes_continues_after_failure(self, persist, kernel, store_dir):
        routes = store_dir / "routes"
        routes.mkdir(parents=True)
        (routes / "main.conf").write_text(
            "10.8.0.0/16 via 192.0.2.1\n"
            "10.9.0.0/16 via 10.0.0.2\n"
        )
        kernel.fail_on["192.0.2.1"] = "Error: Nexthop has invalid gateway.\n"

        result = persist.restore_routes()

        assert result.applied == 1
        assert result.errors == ["10.8.0.0/16 via 192.0.2.1: Error: Nexthop has invalid gateway."]

    def test_restore_rules(self, persist, kernel, store_dir):
        (store_dir / "rules").mkdir(parents=True)
        (store_dir / "rules" / "ip-rules.conf").write_text("priority 1000 from 10.0.0.0/24 lookup 100\n")

        first = persist.restore_rules()
        second = persist.restore_rules()

        assert first.applied == 1
        assert second.applied == 0 and second.existing == 1
        assert kernel.ip_rules.count((1000, "from 10.0.0.0/24 lookup 100")) == 1

    def test_restore_all_attempts_every_domain(self, persist, kernel, store_dir):
        (store_dir / "iptables").mkdir(parents=True)
        (store_dir / "iptables" / "rules.v4").write_text("*filter\nbroken\n")
        (store_dir / "rules").mkdir(parents=True)
        (store_dir / "rules" / "ip-rules.conf").write_text("priority 1000 from 10.0.0.0/24 lookup 100\n")
        kernel.fail_on["iptables-restore"] = "iptables-restore: line 2 failed\n"

        report = persist.restore_all()

        assert [r.domain for r in report.results] == ["firewall", "routes", "rules"]
        assert not report.ok
        assert [r.domain for r in report.failures] == ["firewall"]
        assert report.get("firewall").errors == ["iptables-restore: line 2 failed"]
        assert report.get("routes").skipped
        assert report.get("rules").applied == 1

    def test_restore_all_continues_past_undecodable_file(self, persist, kernel, store_dir):
        routes = store_dir / "routes"
        routes.mkdir(parents=True)
        (routes / "main.conf").write_bytes(b"10.8.0.0/16 via \xff\xfe\n")
        (routes / "100.conf").write_text("10.9.0.0/16 dev wg0\n")
        (store_dir / "rules").mkdir(parents=True)
        (store_dir / "rules" / "ip-rules.conf").write_text("priority 1000 from 10.0.0.0/24 lookup 100\n")

        report = persist.restore_all()

        routes_result = report.get("routes")
        assert not routes_result.ok
        assert "main.conf" in routes_result.errors[0]
        assert routes_result.applied == 1
        assert report.get("rules").applied == 1
        assert (1000, "from 10.0.0.0/24 lookup 100") in kernel.ip_rules

    def test_invalid_stored_lines_reported(self, persist, kernel, store_dir):
        (store_dir / "routes").mkdir(parents=True)
        (store_dir / "routes" / "main.conf").write_text("10.8.0.0/16\n")
        (store_dir / "rules").mkdir(parents=True)
        (store_dir / "rules" / "ip-rules.conf").write_text("priority 1000 from 10.0.0.0/24\n")

        routes = persist.restore_routes()
        rules = persist.restore_rules()

        assert routes.errors == ["10.8.0.0/16: Route to 10.8.0.0/16 needs a gateway or an interface"]
        assert rules.errors == ["priority 1000 from 10.0.0.0/24: Rule needs a table to look up or a terminal action"]
        assert kernel.mutations() == []

    def test_restore_firewall_waits_for_chain_sequence(self, persist, store_dir, waits_for):
        (store_dir / "iptables").mkdir(parents=True)
        (store_dir / "iptables" / "rules.v4").write_text("*nat\nCOMMIT\n")
        assert waits_for(persist.iptables.hold("nat", "POSTROUTING"), persist.restore_firewall)

    def test_restore_routes_waits_for_table_lock(self, persist, store_dir, locks, waits_for):
        (store_dir / "routes").mkdir(parents=True)
        (store_dir / "routes" / "main.conf").write_text("10.8.0.0/16 via 10.0.0.2\n")
        assert waits_for(locks.hold(persist.routes.lock_key("main")), persist.restore_routes)

    def test_restore_rules_waits_for_rule_lock(self, persist, store_dir, locks, waits_for):
        (store_dir / "rules").mkdir(parents=True)
        (store_dir / "rules" / "ip-rules.conf").write_text("priority 1000 from 10.0.0.0/24 lookup 100\n")
        assert waits_for(locks.hold(persist.rules.lock_key), persist.restore_rules)

    def test_replay_twice_then_snapshot_is_stable(self, persist, kernel, make_kernel, store_dir, ctx, audit, locks):
        kernel.routes["main"].append("10.8.0.0/16 via 10.0.0.2 dev eth0")
        kernel.routes["100"] = ["10.9.0.0/16 dev wg0", "blackhole 10.66.0.0/16"]
        persist.save_routes()
        before = {p.name: sorted(p.read_text().splitlines()) for p in (store_dir / "routes").iterdir()}

        fresh = make_kernel()
        engine = PersistService(ctx, fresh, audit=audit, locks=locks)
        first = engine.restore_routes()
        second = engine.restore_routes()
        engine.save_routes()
        after = {p.name: sorted(p.read_text().splitlines()) for p in (store_dir / "routes").iterdir()}

        assert first.ok and second.ok
        assert second.applied == 0
        assert second.existing == first.applied + first.existing
        assert after == before


class TestArchive:
    """Tests for export and import."""

    def test_round_trip(self, persist, ctx, kernel, audit, locks, store_dir, tmp_path):
        kernel.routes["100"] = ["10.9.0.0/16 dev wg0"]
        kernel.ip_rules.append((1000, "from 10.0.0.0/24 lookup 100"))
        persist.save_all()
        os.chmod(store_dir / "rules" / "ip-rules.conf", 0o600)

        data = persist.export_archive()

        target = tmp_path / "other"
        other = PersistService(ctx, kernel, audit=audit, locks=locks, store_dir=target)
        written = other.import_archive(data)

        originals = sorted(p.relative_to(store_dir) for p in store_dir.rglob("*") if p.is_file())
        copies = sorted(p.relative_to(target) for p in target.rglob("*") if p.is_file())
        assert copies == originals
        assert written == len(originals)
        for rel in originals:
            assert (target / rel).read_bytes() == (store_dir / rel).read_bytes()
            assert (target / rel).stat().st_mode & 0o777 == (store_dir / rel).stat().st_mode & 0o777
        assert (target / "rules" / "ip-rules.conf").stat().st_mode & 0o777 == 0o600

    def test_export_uses_relative_paths(self, persist, store_dir):
        persist.save_all()
        with tarfile.open(fileobj=io.BytesIO(persist.export_archive()), mode="r:gz") as tar:
            names = tar.getnames()
        assert "iptables/rules.v4" in names
        assert "routes/main.conf" in names
        assert all(not n.startswith("/") and not n.startswith("..") for n in names)

    def test_import_drops_special_mode_bits(self, persist, store_dir):
        persist.import_archive(_archive([_file("routes/main.conf", b"10.8.0.0/16 dev wg0\n", mode=0o4755)]))
        assert (store_dir / "routes" / "main.conf").stat().st_mode & 0o7777 == 0o755

    def test_export_missing_store(self, persist):
        with pytest.raises(StoreError):
            persist.export_archive()

    def test_export_import_audited(self, persist, audit):
        persist.save_all()
        persist.import_archive(persist.export_archive())
        events = [c.args[0] for c in audit.log_success.call_args_list]
        assert AuditEventType.STORE_EXPORT in events
        assert AuditEventType.STORE_IMPORT in events

    def test_traversal_rejected_before_writing(self, persist, store_dir, tmp_path):
        data = _archive([
            _file("routes/main.conf", b"10.8.0.0/16 via 10.0.0.2\n"),
            _file("../escape.conf", b"pwned\n"),
        ])
        with pytest.raises(StoreError) as exc:
            persist.import_archive(data)
        assert "escape" in exc.value.message
        assert not (tmp_path / "escape.conf").exists()
        assert not (store_dir / "routes" / "main.conf").exists()

    def test_absolute_path_rejected(self, persist):
        with pytest.raises(StoreError):
            persist.import_archive(_archive([_file("/etc/passwd", b"root::0:0\n")]))

    def test_symlink_rejected(self, persist, store_dir):
        link = tarfile.TarInfo("routes/main.conf")
        link.type = tarfile.SYMTYPE
        link.linkname = "/etc/shadow"
        with pytest.raises(StoreError):
            persist.import_archive(_archive([(link, None)]))
        assert not store_dir.exists()

    def test_garbage_rejected(self, persist):
        with pytest.raises(StoreError):
            persist.import_archive(b"not an archive")
