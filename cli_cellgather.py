#!/usr/bin/env python
import argparse
import logging

import networkx as nx

from cellgather.ast_capture import cells_from_notebook
from cellgather.config import load_slice_configuration
from cellgather.gather import GatherExecution


def _replay(args):
    configuration = load_slice_configuration(args.rules, include_pure_calls=args.pure_calls)
    gatherer = GatherExecution(configuration, include_header=not getattr(args, 'no_header', False))
    cells = cells_from_notebook(args.notebook)
    for cell in cells:
        gatherer.post_execute(cell)
    return gatherer, cells


def _find_target(cells, args):
    if args.count is not None:
        matches = [c for c in cells if c.execution_count == args.count]
    else:
        matches = [c for c in cells if c.id == args.cell]
    if not matches:
        wanted = f"execution count {args.count}" if args.count is not None else f"id {args.cell}"
        raise SystemExit(f"No executed cell with {wanted} in {args.notebook}")
    return matches[-1]


def cmd_gather(args):
    gatherer, cells = _replay(args)
    target = _find_target(cells, args)
    code = gatherer.gather_code(target)
    if args.out:
        with open(args.out, 'w', encoding='utf-8') as f:
            f.write(code)
        print(f"Gathered program written to {args.out}")
    else:
        print(code, end='')


def cmd_graph(args):
    gatherer, _ = _replay(args)
    nx.write_graphml(gatherer.execution_slicer.export_graph(), args.out)
    print(f"Dependency graph written to {args.out}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Gather the minimal code needed to reproduce a notebook cell'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Log analysis details')
    sub = parser.add_subparsers(dest='cmd', required=True)

    def add_common(p):
        p.add_argument('notebook', help='Path to notebook.ipynb')
        p.add_argument('--rules', help='YAML file with calls that do not modify their object/arguments')
        p.add_argument('--pure-calls', action='store_true', help='Also apply the built-in list of read-only calls')

    pg = sub.add_parser('gather', help='Print the gathered program for one cell')
    add_common(pg)
    target = pg.add_mutually_exclusive_group(required=True)
    target.add_argument('--count', type=int, help='Execution count of the cell to gather')
    target.add_argument('--cell', help='Cell id to gather (its latest execution)')
    pg.add_argument('--out', help='Write the program to this file instead of stdout')
    pg.add_argument('--no-header', action='store_true', help='Omit the explanatory header comment')
    pg.set_defaults(func=cmd_gather)

    pgr = sub.add_parser('graph', help='Export the statement dependency graph as GraphML')
    add_common(pgr)
    pgr.add_argument('--out', required=True, help='Output .graphml path')
    pgr.set_defaults(func=cmd_graph)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s  %(name)-24s  %(levelname)-7s  %(message)s",
    )
    args.func(args)


if __name__ == '__main__':
    main()
