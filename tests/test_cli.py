import json

from unittest.mock import MagicMock, patch

from elasticsearch import NotFoundError as ESNotFoundError

from elasticdocs.cli import build_parser, main

from conftest import search_response


def test_parser_global_options():
    args = build_parser().parse_args(
        ["--host", "es1", "--port", "9201", "--other-hosts", "es2:9202", "search", "orders", "{}", "--limit", "5"]
    )

    assert args.host == "es1"
    assert args.port == 9201
    assert args.command == "search"
    assert args.limit == 5


def test_no_command_prints_help(capsys):
    assert main([]) == 2
    assert "usage" in capsys.readouterr().out


def test_create_command(es_class, client, capsys):
    client.indices.exists.return_value = False

    assert main(["--host", "es1", "create", "orders"]) == 0

    assert "Created index: orders" in capsys.readouterr().out
    client.indices.create.assert_called_once_with(index="orders")
    assert es_class.call_args.kwargs["hosts"][0]["host"] == "es1"


def test_get_missing_document_exits_1(es_class, client, capsys):
    client.get.side_effect = ESNotFoundError("not_found", MagicMock(status=404), {})

    assert main(["get", "orders", "order", "42"]) == 1

    assert "does not exist" in capsys.readouterr().err


def test_search_command(es_class, client, capsys):
    pages = [
        search_response([{"n": 1}, {"n": 2}], aggregations={"by_n": {"value": 3}}),
        search_response([], total=2, aggregations={"by_n": {"value": 3}}),
    ]
    client.search.side_effect = pages

    assert main(["search", "orders", '{"query": {"match_all": {}}}', "--facet", "by_n"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Total hits: 2"
    assert [json.loads(line) for line in out[1:3]] == [{"n": 1}, {"n": 2}]
    assert out[3] == 'by_n: {"value": 3}'


def test_load_command(es_class, client, tmp_path, capsys):
    data = tmp_path / "orders.jsonl"
    data.write_text('{"id": "a", "total": 1}\n\n{"id": "b", "total": 2}\n', encoding="utf-8")

    with patch("elasticdocs.batch.bulk", return_value=(2, [])) as mock_bulk:
        assert main(["load", "orders", "order", str(data), "--id-field", "id", "--sync"]) == 0

    actions = mock_bulk.call_args.args[1]
    assert [a["_id"] for a in actions] == ["a", "b"]
    assert actions[0]["_source"]["doc_type"] == "order"
    assert "Loaded 2 documents" in capsys.readouterr().out


def test_load_malformed_line_exits_1(es_class, client, tmp_path, capsys):
    data = tmp_path / "orders.jsonl"
    data.write_text('{"id": "a"}\n{"id": \n', encoding="utf-8")

    with patch("elasticdocs.batch.bulk", return_value=(1, [])):
        assert main(["load", "orders", "order", str(data), "--sync"]) == 1

    assert "line 2" in capsys.readouterr().err
