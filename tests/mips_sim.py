"""A small interpreter for the CS241 MIPS dialect, used by the end-to-end tests.

Supports the instructions the code generator emits plus the four runtime
routines (print, init, new, delete), which run as Python callbacks when
``jalr`` reaches their sentinel address.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

RETURN_ADDRESS = 0x8123456C
STACK_TOP = 0x01000000
BUILTINS = {
    "print": 0x7F000000,
    "init": 0x7F000004,
    "new": 0x7F000008,
    "delete": 0x7F00000C,
}

LABEL = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*)\s*:")
MEMORY_OP = re.compile(r"^(-?\w+)\((\$\d+)\)$")


class MipsError(Exception):
    pass


def _signed(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _reg(text: str) -> int:
    if not text.startswith("$"):
        raise MipsError(f"expected register, got {text!r}")
    n = int(text[1:])
    if not 0 <= n <= 31:
        raise MipsError(f"bad register {text}")
    return n


@dataclass
class RunResult:
    registers: List[int]
    output: List[str] = field(default_factory=list)
    steps: int = 0
    live_allocations: int = 0

    @property
    def result(self) -> int:
        return _signed(self.registers[3])

    def reg(self, n: int) -> int:
        return _signed(self.registers[n])


class Machine:
    def __init__(self, assembly: str):
        self.program: List[Tuple[str, tuple]] = []
        self.labels: Dict[str, int] = {}
        self.imports: List[str] = []
        self._assemble(assembly)

    # -----------------
    # Assembly
    # -----------------

    def _assemble(self, text: str) -> None:
        pending: List[Tuple[str, List[str]]] = []
        for raw in text.splitlines():
            line = raw.split(";", 1)[0].strip()
            while True:
                m = LABEL.match(line)
                if not m:
                    break
                name = m.group(1)
                if name in self.labels:
                    raise MipsError(f"duplicate label {name}")
                self.labels[name] = 4 * len(pending)
                line = line[m.end():].strip()
            if not line:
                continue
            op, _, rest = line.partition(" ")
            if op == ".import":
                self.imports.append(rest.strip())
                continue
            args = [a.strip() for a in rest.split(",")] if rest.strip() else []
            pending.append((op, args))

        for index, (op, args) in enumerate(pending):
            self.program.append((op, self._operands(op, args, 4 * index)))

    def _value(self, text: str) -> int:
        if text in self.labels:
            return self.labels[text]
        if text in BUILTINS:
            if text not in self.imports:
                raise MipsError(f"{text} used without .import")
            return BUILTINS[text]
        try:
            return int(text, 0)
        except ValueError:
            raise MipsError(f"unknown label {text}") from None

    def _operands(self, op: str, args: List[str], address: int) -> tuple:
        if op == ".word":
            return (self._value(args[0]) & 0xFFFFFFFF,)
        if op in ("add", "sub", "slt", "sltu"):
            return tuple(_reg(a) for a in args)
        if op in ("mult", "multu", "div", "divu"):
            return tuple(_reg(a) for a in args)
        if op in ("mfhi", "mflo", "lis", "jr", "jalr"):
            return (_reg(args[0]),)
        if op in ("lw", "sw"):
            m = MEMORY_OP.match(args[1].replace(" ", ""))
            if not m:
                raise MipsError(f"bad memory operand {args[1]!r}")
            return (_reg(args[0]), int(m.group(1), 0), _reg(m.group(2)))
        if op in ("beq", "bne"):
            target = args[2]
            if target in self.labels:
                dest = self.labels[target]
            else:
                dest = address + 4 + 4 * int(target, 0)
            return (_reg(args[0]), _reg(args[1]), dest)
        raise MipsError(f"unknown instruction {op}")

    # -----------------
    # Execution
    # -----------------

    def run_twoints(self, a: int, b: int, **kwargs) -> RunResult:
        return self._run(a & 0xFFFFFFFF, b & 0xFFFFFFFF, **kwargs)

    def run_array(self, values: List[int], **kwargs) -> RunResult:
        base = 4 * len(self.program) + 64
        memory = {base + 4 * i: v & 0xFFFFFFFF for i, v in enumerate(values)}
        return self._run(base, len(values), memory=memory, **kwargs)

    def _run(self, r1: int, r2: int, memory: Optional[Dict[int, int]] = None,
             step_limit: int = 2_000_000) -> RunResult:
        regs = [0] * 32
        regs[1], regs[2] = r1, r2
        regs[30] = STACK_TOP
        regs[31] = RETURN_ADDRESS
        mem: Dict[int, int] = dict(memory or {})
        for i, (op, operands) in enumerate(self.program):
            if op == ".word":
                mem[4 * i] = operands[0]
        result = RunResult(registers=regs)
        heap = _Heap(4 * len(self.program) + 64 + 4 * (len(memory or {}) + 16))
        hi = lo = 0
        pc = 0

        while pc != RETURN_ADDRESS:
            result.steps += 1
            if result.steps > step_limit:
                raise MipsError("step limit exceeded")
            index = pc // 4
            if pc % 4 or not 0 <= index < len(self.program):
                raise MipsError(f"pc out of range: {pc:#x}")
            op, args = self.program[index]
            pc += 4

            if op == ".word":
                raise MipsError(f"executed data word at {pc - 4:#x}")
            elif op == "add":
                regs[args[0]] = (regs[args[1]] + regs[args[2]]) & 0xFFFFFFFF
            elif op == "sub":
                regs[args[0]] = (regs[args[1]] - regs[args[2]]) & 0xFFFFFFFF
            elif op == "slt":
                regs[args[0]] = int(_signed(regs[args[1]]) < _signed(regs[args[2]]))
            elif op == "sltu":
                regs[args[0]] = int(regs[args[1]] < regs[args[2]])
            elif op in ("mult", "multu"):
                if op == "mult":
                    product = _signed(regs[args[0]]) * _signed(regs[args[1]])
                else:
                    product = regs[args[0]] * regs[args[1]]
                lo = product & 0xFFFFFFFF
                hi = (product >> 32) & 0xFFFFFFFF
            elif op in ("div", "divu"):
                if op == "div":
                    x, y = _signed(regs[args[0]]), _signed(regs[args[1]])
                else:
                    x, y = regs[args[0]], regs[args[1]]
                if y == 0:
                    raise MipsError("division by zero")
                q = abs(x) // abs(y)
                if (x < 0) != (y < 0):
                    q = -q
                lo = q & 0xFFFFFFFF
                hi = (x - y * q) & 0xFFFFFFFF
            elif op == "mfhi":
                regs[args[0]] = hi
            elif op == "mflo":
                regs[args[0]] = lo
            elif op == "lis":
                regs[args[0]] = mem.get(pc, 0)
                pc += 4
            elif op == "lw":
                address = (regs[args[2]] + args[1]) & 0xFFFFFFFF
                if address % 4:
                    raise MipsError(f"unaligned load at {address:#x}")
                regs[args[0]] = mem.get(address, 0)
            elif op == "sw":
                address = (regs[args[2]] + args[1]) & 0xFFFFFFFF
                if address % 4:
                    raise MipsError(f"unaligned store at {address:#x}")
                if address < 4 * len(self.program):
                    raise MipsError(f"store into code at {address:#x}")
                mem[address] = regs[args[0]]
            elif op in ("beq", "bne"):
                equal = regs[args[0]] == regs[args[1]]
                if equal == (op == "beq"):
                    pc = args[2]
            elif op == "jr":
                pc = regs[args[0]]
            elif op == "jalr":
                target = regs[args[0]]
                regs[31] = pc
                if target in BUILTINS.values():
                    self._builtin(target, regs, mem, heap, result)
                    pc = regs[31]
                else:
                    pc = target
            regs[0] = 0

        result.live_allocations = len(heap.blocks)
        return result

    def _builtin(self, target: int, regs: List[int], mem: Dict[int, int], heap: "_Heap",
                 result: RunResult) -> None:
        if target == BUILTINS["print"]:
            result.output.append(str(_signed(regs[1])))
        elif target == BUILTINS["init"]:
            heap.initialized = True
        elif target == BUILTINS["new"]:
            if not heap.initialized:
                raise MipsError("new called before init")
            regs[3] = heap.allocate(_signed(regs[1]))
        elif target == BUILTINS["delete"]:
            heap.free(regs[1])


class _Heap:
    def __init__(self, base: int):
        self.next = base
        self.blocks: Dict[int, int] = {}
        self.initialized = False

    def allocate(self, words: int) -> int:
        if words < 1:
            return 0
        address = self.next
        self.blocks[address] = words
        self.next += 4 * words
        return address

    def free(self, address: int) -> None:
        if address not in self.blocks:
            raise MipsError(f"delete of unallocated address {address:#x}")
        del self.blocks[address]
