"""
Tests for the cellgather command line tool.
"""

import networkx as nx
import nbformat
import pytest

from cli_cellgather import main


@pytest.fixture
def notebook(tmp_path):
    nb = nbformat.v4.new_notebook()
    nb.cells = [
        nbformat.v4.new_code_cell("x = 1", execution_count=1),
        nbformat.v4.new_code_cell("y = x + 1", execution_count=2),
        nbformat.v4.new_code_cell("z = 10", execution_count=3),
    ]
    nb.cells[1].id = "second"
    path = tmp_path / "session.ipynb"
    nbformat.write(nb, str(path))
    return str(path)


def test_gather_prints_program(notebook, capsys):
    main(["gather", notebook, "--count", "2", "--no-header"])
    assert capsys.readouterr().out == "# %%\nx = 1\n\n# %%\ny = x + 1\n"


def test_gather_by_cell_id_writes_file(notebook, tmp_path):
    out = tmp_path / "gathered.py"
    main(["gather", notebook, "--cell", "second", "--out", str(out)])
    text = out.read_text(encoding="utf-8")
    assert text.startswith("# This file contains only the code")
    assert text.endswith("# %%\nx = 1\n\n# %%\ny = x + 1\n")


def test_gather_unknown_count_exits(notebook):
    with pytest.raises(SystemExit):
        main(["gather", notebook, "--count", "9"])


def test_graph_writes_graphml(notebook, tmp_path):
    out = tmp_path / "deps.graphml"
    main(["graph", notebook, "--out", str(out)])
    G = nx.read_graphml(str(out))
    assert set(G.nodes) == {"0:0", "1:0", "2:0"}
    assert list(G.edges) == [("0:0", "1:0")]
    assert G.edges["0:0", "1:0"]["label"] == "x"
