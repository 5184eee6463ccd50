#!/usr/bin/env python3
"""wlp4c - top-level CLI wrapper

Usage examples:
  ./wlp4c.py prog.wlp4 -o prog.asm
  ./wlp4c.py prog.wlp4 --emit tree
  ./wlp4c.py prog.scanned --tokens-in
  ./wlp4c.py --dump-table -o wlp4.lr1
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from wlp4c.compiler import Compiler
from wlp4c.errors import CompileError
from wlp4c.lexer import format_tokens, read_token_stream
from wlp4c.parse_tree import format_tree


def _write(text: str, output: Optional[str]) -> None:
    if output:
        with open(output, "w") as f:
            f.write(text)
    else:
        sys.stdout.write(text)


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    ap = argparse.ArgumentParser(prog="wlp4c", description="WLP4 to MIPS compiler")
    ap.add_argument("source", nargs="?", help="Input WLP4 source ('-' for stdin)")
    ap.add_argument("-o", dest="output", required=False, help="Output file (default: stdout)")
    ap.add_argument("--no-opt", action="store_true", help="Disable constant folding and propagation")
    ap.add_argument("--no-comments", action="store_true", help="Omit allocation comments from the assembly")
    ap.add_argument("--emit", choices=("asm", "tokens", "tree"), default="asm",
                    help="Stop after scanning, after type checking, or emit assembly")
    ap.add_argument("--tokens-in", action="store_true",
                    help="Input is a scanned token stream ('KIND lexeme' per line)")
    ap.add_argument("--table", help="Load the LR parse table from this file (default: $WLP4C_TABLE or built in)")
    ap.add_argument("--dump-table", action="store_true", help="Write the LR parse table and exit")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log compilation phases to stderr")
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    # The tree dump shows the program as type checked, before any rewriting.
    optimize = not args.no_opt and args.emit == "asm"
    compiler = Compiler(optimize=optimize, table_path=args.table, comments=not args.no_comments)

    if args.dump_table:
        try:
            _write(compiler.table.dumps(), args.output)
        except (OSError, CompileError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    if not args.source:
        ap.error("the following arguments are required: source")

    try:
        if args.source == "-":
            text = sys.stdin.read()
        else:
            with open(args.source, "r") as f:
                text = f.read()
    except OSError as e:
        print(f"Error: Failed to read source file: {e}", file=sys.stderr)
        return 1

    try:
        tokens = read_token_stream(text) if args.tokens_in else compiler.get_tokens(text)
    except CompileError as e:
        print(f"Error: Lexical analysis failed: {e}", file=sys.stderr)
        return 1

    if args.emit == "tokens":
        _write(format_tokens(tokens), args.output)
        return 0

    result = compiler.compile_tokens(tokens)
    if not result.success:
        for e in result.errors:
            print(f"Error: {e}", file=sys.stderr)
        return 1
    for w in result.warnings:
        print(f"Warning: {w}", file=sys.stderr)

    if args.emit == "tree":
        _write(format_tree(result.tree), args.output)
    else:
        _write(result.assembly, args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
