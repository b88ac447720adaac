"""Shared fixtures: execution context and a simulated kernel.

FakeKernel stands in for CommandExecutor. It keeps iptables chains,
routing tables and policy rules in memory and answers iptables, ip route
and ip rule commands the way the real tools print them.
"""

import shlex
import threading
from dataclasses import dataclass, field
from typing import Optional
from unittest.mock import MagicMock

import pytest

from rtr.core.audit import AuditLogger
from rtr.core.config import AppConfig, AuditConfig, EnvOverrides, MachineConfig, StoreConfig
from rtr.core.context import ExecutionContext
from rtr.core.exceptions import ExecutionError
from rtr.core.executor import CommandResult
from rtr.core.locks import KeyedLocks


NO_CHAIN = "iptables: No chain/target/match by that name.\n"
FILE_EXISTS = "RTNETLINK answers: File exists\n"
NO_SUCH_PROCESS = "RTNETLINK answers: No such process\n"


@dataclass
class FakeChain:
    policy: Optional[str] = None
    rules: list[list[str]] = field(default_factory=list)


def _builtin(*names: str) -> dict[str, FakeChain]:
    return {name: FakeChain(policy="ACCEPT") for name in names}


def _option(tokens: list[str], name: str) -> Optional[str]:
    if name in tokens:
        i = tokens.index(name)
        if i + 1 < len(tokens):
            return tokens[i + 1]
    return None


class FakeKernel:
    """In-memory kernel answering the commands the services issue."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, FakeChain]] = {
            "filter": _builtin("INPUT", "FORWARD", "OUTPUT"),
            "nat": _builtin("PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"),
            "mangle": _builtin("PREROUTING", "INPUT", "FORWARD", "OUTPUT", "POSTROUTING"),
            "raw": _builtin("PREROUTING", "OUTPUT"),
        }
        self.routes: dict[str, list[str]] = {
            "main": [
                "default via 10.0.0.1 dev eth0 proto dhcp metric 100",
                "10.0.0.0/24 dev eth0 proto kernel scope link src 10.0.0.5",
            ],
            "local": [
                "local 10.0.0.5 dev eth0 proto kernel scope host src 10.0.0.5",
                "broadcast 10.0.0.255 dev eth0 proto kernel scope link src 10.0.0.5",
            ],
        }
        self.ip_rules: list[tuple[int, str]] = [
            (0, "from all lookup local"),
            (32766, "from all lookup main"),
            (32767, "from all lookup default"),
        ]
        self.calls: list[list[str]] = []
        self.restored: list[str] = []
        # Substring of the joined command -> error output to fail it with
        self.fail_on: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Executor interface
    # ------------------------------------------------------------------

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        input: Optional[str] = None,
        combine_output: bool = False,
        timeout: Optional[int] = None,
        mutating: bool = True,
    ) -> CommandResult:
        command = list(command)
        self.calls.append(command)
        joined = shlex.join(command)

        code, out, err = 0, "", ""
        for needle, message in self.fail_on.items():
            if needle in joined:
                code, out, err = 1, "", message
                break
        else:
            code, out, err = self._dispatch(command, input)

        result = CommandResult(command=command, return_code=code, stdout=out, stderr=err)
        if check and not result.success:
            raise ExecutionError(
                f"Command failed: {joined}",
                command=joined,
                return_code=code,
                output=result.output,
            )
        return result

    def mutations(self) -> list[list[str]]:
        """Calls that are not listings."""
        reads = ("-L", "-S", "show")
        return [
            c for c in self.calls
            if c[0] != "iptables-save" and not any(r in c for r in reads)
        ]

    # ------------------------------------------------------------------
    # Helpers for assertions
    # ------------------------------------------------------------------

    def add(self, table: str, chain: str, spec: str) -> None:
        self.tables[table][chain].rules.append(shlex.split(spec))

    def comments(self, table: str, chain: str) -> list[str]:
        return [_option(spec, "--comment") or "" for spec in self.tables[table][chain].rules]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, command: list[str], stdin: Optional[str]) -> tuple[int, str, str]:
        if command[0] == "iptables":
            return self._iptables(command[1:])
        if command[0] == "iptables-save":
            return 0, self._save(), ""
        if command[0] == "iptables-restore":
            self.restored.append(stdin or "")
            return 0, "", ""
        if command[:2] == ["ip", "route"]:
            return self._ip_route(command[2], command[3:])
        if command[:2] == ["ip", "rule"]:
            return self._ip_rule(command[2], command[3:])
        return 127, "", f"{command[0]}: command not found\n"

    # iptables --------------------------------------------------------

    def _references(self, table: str, chain: str) -> int:
        return sum(
            1
            for c in self.tables[table].values()
            for spec in c.rules
            if _option(spec, "-j") == chain
        )

    def _row(self, num: int, spec: list[str]) -> str:
        target, prot, src, dst, iif, oif = "", "all", "0.0.0.0/0", "0.0.0.0/0", "*", "*"
        extra = []
        i = 0
        while i < len(spec):
            flag = spec[i]
            value = spec[i + 1] if i + 1 < len(spec) else ""
            if flag == "-j":
                target = value
            elif flag == "-p":
                prot = value
            elif flag == "-s":
                src = value
            elif flag == "-d":
                dst = value
            elif flag == "-i":
                iif = value
            elif flag == "-o":
                oif = value
            elif flag == "-m":
                pass
            elif flag == "--dport":
                extra.append(f"{prot} dpt:{value}")
            elif flag == "--sport":
                extra.append(f"{prot} spt:{value}")
            elif flag == "--state":
                extra.append(f"state {value}")
            elif flag == "--comment":
                extra.append(f"/* {value} */")
            else:
                extra.append(f"{flag.lstrip('-')}:{value}")
            i += 2
        line = (
            f"{num:<5} {0:>5} {0:>5} {target:<10} {prot:<4} --  "
            f"{iif:<6} {oif:<6}  {src:<20} {dst:<20} {' '.join(extra)}"
        )
        return line.rstrip()

    def _render(self, table: str, name: str) -> str:
        chain = self.tables[table][name]
        if chain.policy:
            header = f"Chain {name} (policy {chain.policy} 0 packets, 0 bytes)"
        else:
            header = f"Chain {name} ({self._references(table, name)} references)"
        lines = [
            header,
            "num   pkts bytes target     prot opt in     out     source               destination",
        ]
        lines.extend(self._row(i, spec) for i, spec in enumerate(chain.rules, 1))
        return "\n".join(lines)

    def _specs(self, table: str, name: str) -> str:
        chain = self.tables[table][name]
        lines = [f"-P {name} {chain.policy}" if chain.policy else f"-N {name}"]
        lines.extend(shlex.join(["-A", name] + spec) for spec in chain.rules)
        return "\n".join(lines) + "\n"

    def _save(self) -> str:
        out = ["# Generated by iptables-save"]
        for table, chains in self.tables.items():
            out.append(f"*{table}")
            for name, chain in chains.items():
                out.append(f":{name} {chain.policy or '-'} [0:0]")
            for name, chain in chains.items():
                out.extend(shlex.join(["-A", name] + spec) for spec in chain.rules)
            out.append("COMMIT")
        return "\n".join(out) + "\n"

    def _iptables(self, args: list[str]) -> tuple[int, str, str]:
        if args and args[0] == "-w":
            args = args[1:]
        table = "filter"
        if args[:1] == ["-t"]:
            table, args = args[1], args[2:]
        chains = self.tables[table]
        op = args[0]
        name = args[1] if len(args) > 1 and not args[1].startswith("-") else None

        if op == "-N":
            if name in chains:
                return 1, "", "iptables: Chain already exists.\n"
            chains[name] = FakeChain()
            return 0, "", ""

        if name is not None and name not in chains:
            return 1, "", NO_CHAIN

        if op == "-L":
            names = [name] if name else list(chains)
            return 0, "\n\n".join(self._render(table, n) for n in names) + "\n", ""
        if op == "-S":
            return 0, self._specs(table, name), ""
        if op == "-A":
            chains[name].rules.append(args[2:])
            return 0, "", ""
        if op == "-I":
            rules = chains[name].rules
            pos = int(args[2])
            if pos > len(rules) + 1:
                return 1, "", "iptables: Index of insertion too big.\n"
            rules.insert(pos - 1, args[3:])
            return 0, "", ""
        if op == "-D":
            rules = chains[name].rules
            num = int(args[2])
            if num > len(rules):
                return 1, "", "iptables: Index of deletion too big.\n"
            del rules[num - 1]
            return 0, "", ""
        if op == "-X":
            if chains[name].rules or self._references(table, name):
                return 1, "", "iptables: Directory not empty.\n"
            del chains[name]
            return 0, "", ""
        if op == "-F":
            for n in [name] if name else list(chains):
                chains[n].rules.clear()
            return 0, "", ""
        if op == "-P":
            chains[name].policy = args[2]
            return 0, "", ""
        return 2, "", f"iptables: unknown option {op}\n"

    # ip route --------------------------------------------------------

    @staticmethod
    def _route_key(tokens: list[str]) -> tuple[str, str]:
        dest = tokens[0]
        if dest in ("unreachable", "blackhole", "prohibit", "throw", "local", "broadcast"):
            dest = f"{tokens[0]} {tokens[1]}"
        return dest, _option(tokens, "metric") or "0"

    def _ip_route(self, verb: str, args: list[str]) -> tuple[int, str, str]:
        table = _option(args, "table") or "main"
        tokens = list(args)
        if "table" in tokens:
            i = tokens.index("table")
            del tokens[i:i + 2]

        if verb == "show":
            if table == "all":
                lines = []
                for name, routes in self.routes.items():
                    for route in routes:
                        lines.append(route if name == "main" else f"{route} table {name}")
            else:
                lines = list(self.routes.get(table, []))
            return 0, "".join(f"{line}\n" for line in lines), ""

        routes = self.routes.setdefault(table, [])
        if verb == "add":
            key = self._route_key(tokens)
            if any(self._route_key(r.split()) == key for r in routes):
                return 2, "", FILE_EXISTS
            routes.append(" ".join(tokens))
            return 0, "", ""
        if verb == "del":
            for route in routes:
                if route.split()[0] == tokens[0]:
                    routes.remove(route)
                    return 0, "", ""
            return 2, "", NO_SUCH_PROCESS
        if verb == "flush":
            routes.clear()
            return 0, "", ""
        return 255, "", f'Command "{verb}" is unknown\n'

    # ip rule ---------------------------------------------------------

    def _ip_rule(self, verb: str, args: list[str]) -> tuple[int, str, str]:
        if verb == "show":
            rules = sorted(self.ip_rules)
            return 0, "".join(f"{p}:\t{sel}\n" for p, sel in rules), ""

        tokens = list(args)
        priority = _option(tokens, "priority")
        if priority is not None:
            i = tokens.index("priority")
            del tokens[i:i + 2]
        selector_tokens = tokens
        if "from" not in selector_tokens:
            pos = 1 if selector_tokens[:1] == ["not"] else 0
            selector_tokens = selector_tokens[:pos] + ["from", "all"] + selector_tokens[pos:]
        selector = " ".join(selector_tokens)

        if verb == "add":
            if priority is None:
                user = [p for p, _ in self.ip_rules if p > 0]
                prio = min(user) - 1
            else:
                prio = int(priority)
            if (prio, selector) in self.ip_rules:
                return 2, "", FILE_EXISTS
            self.ip_rules.append((prio, selector))
            return 0, "", ""
        if verb == "del":
            for prio, sel in list(self.ip_rules):
                if priority is not None and prio != int(priority):
                    continue
                wanted_from = _option(tokens, "from")
                if wanted_from and _option(sel.split(), "from") != wanted_from:
                    continue
                self.ip_rules.remove((prio, sel))
                return 0, "", ""
            return 2, "", NO_SUCH_PROCESS
        return 255, "", f'Command "{verb}" is unknown\n'


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------

@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def ctx(tmp_path, store_dir):
    """Context with config pointing at tmp_path."""
    config = MachineConfig(
        store=StoreConfig(store_dir=store_dir),
        audit=AuditConfig(enabled=False, log_path=tmp_path / "audit.log"),
    )
    app_config = AppConfig(
        config_path=tmp_path / "config.yaml",
        config=config,
        env=EnvOverrides(store_dir=None, command_timeout=None),
    )
    return ExecutionContext(config_path=tmp_path / "config.yaml", _config=app_config)


@pytest.fixture
def kernel():
    return FakeKernel()


@pytest.fixture
def audit():
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def make_kernel():
    """Factory for additional, independent kernels."""
    return FakeKernel


@pytest.fixture
def waits_for():
    """Checker: does ``operation()`` wait until ``hold`` is released?

    ``hold`` is entered in a second thread; the operation runs in a third
    and must still be pending while the lock is held, then complete.
    """
    def check(hold, operation) -> bool:
        held = threading.Event()
        release = threading.Event()
        done = threading.Event()

        def holder():
            with hold:
                held.set()
                release.wait(5)

        def worker():
            operation()
            done.set()

        holder_thread = threading.Thread(target=holder)
        holder_thread.start()
        held.wait(5)
        worker_thread = threading.Thread(target=worker)
        worker_thread.start()
        try:
            waited = not done.wait(0.2)
        finally:
            release.set()
            holder_thread.join()
            worker_thread.join(5)
        return waited and done.is_set()

    return check
