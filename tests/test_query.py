import pytest

from tagshelf.query import QuerySyntaxError, Term, parse, to_sql, tokenize


def test_tokenize_handles_quotes():
    assert tokenize('cat "big dog"  -x') == [("cat", False), ("big dog", True), ("-x", False)]


def test_parse_terms():
    assert parse('Cat -dog in:photos/ - "big bird"') == [
        Term("tag", "cat"),
        Term("tag", "dog", negated=True),
        Term("in", "photos/"),
        Term("tag", "big bird", negated=True),
    ]


def test_quoted_in_prefix_is_a_tag():
    assert parse('"in:x"') == [Term("tag", "in:x")]


@pytest.mark.parametrize("text", ['"open', "- -a", "--a", "-", "in:", '""', "a -"])
def test_bad_queries_raise(text):
    with pytest.raises(QuerySyntaxError):
        parse(text)


def test_empty_query_matches_everything():
    assert to_sql("   ") == ("1=1", ())


def test_to_sql_tags_and_prefixes():
    where, params = to_sql("a -b -in:/raw_%/")
    assert where.count("NOT IN") == 1
    assert "i.path NOT LIKE ? ESCAPE" in where
    assert params == ("a", "b", "raw\\_\\%/%")
