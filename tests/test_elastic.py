"""Tests for the Elasticsearch backend: query translation and client calls."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from memory_zones.docstore.base import Filter, NamespaceKind, QueryIntent, QueryKind, SearchRequest, SortBy
from memory_zones.docstore.elastic import (
    ElasticsearchConfig,
    ElasticsearchDocumentStore,
    build_search_body,
    filter_to_query,
    intent_to_query,
    sort_clause,
)


class TestFilterTranslation:
    def test_empty_is_match_all(self):
        assert filter_to_query(Filter()) == {"match_all": {}}
        assert filter_to_query(None) == {"match_all": {}}

    def test_must_terms(self):
        query = filter_to_query(Filter(must={"name": "Paris", "entityType": ["city", "town"]}))
        assert query == {
            "bool": {
                "filter": [
                    {"term": {"name.keyword": "Paris"}},
                    {"terms": {"entityType": ["city", "town"]}},
                ]
            }
        }

    def test_should_groups(self):
        query = filter_to_query(Filter(should=({"from": "A", "fromZone": "z"}, {"to": "A", "toZone": "z"})))
        assert query["bool"]["minimum_should_match"] == 1
        assert query["bool"]["should"][0] == {
            "bool": {"filter": [{"term": {"from": "A"}}, {"term": {"fromZone": "z"}}]}
        }


class TestIntentTranslation:
    def test_wildcard(self):
        assert intent_to_query(QueryIntent(QueryKind.WILDCARD, "*")) == {"match_all": {}}

    def test_exact_name_boosts_keyword(self):
        query = intent_to_query(QueryIntent(QueryKind.EXACT_NAME, "Paris"))
        should = query["bool"]["should"]
        assert should[0] == {"term": {"name.keyword": {"value": "Paris", "boost": 10}}}

    @pytest.mark.parametrize("kind", [QueryKind.BOOLEAN, QueryKind.FUZZY])
    def test_query_string(self, kind: QueryKind):
        query = intent_to_query(QueryIntent(kind, "a AND b"))
        assert query["query_string"]["query"] == "a AND b"
        assert query["query_string"]["fields"] == ["name^3", "entityType^2", "observations"]

    def test_generic_is_fuzzy_multi_match(self):
        query = intent_to_query(QueryIntent(QueryKind.GENERIC, "capital of france"))
        assert query["multi_match"]["fuzziness"] == "AUTO"


class TestSearchBody:
    def test_sort_clauses(self):
        assert sort_clause(SortBy.RECENT) == [{"lastRead": {"order": "desc"}}]
        assert sort_clause(SortBy.IMPORTANCE) == [
            {"isImportant": {"order": "desc"}},
            {"relevanceScore": {"order": "desc"}},
        ]
        assert sort_clause(SortBy.RELEVANCE) == [{"_score": {"order": "desc"}}]

    def test_body(self):
        body = build_search_body(
            SearchRequest(
                intent=QueryIntent(QueryKind.WILDCARD, "*"),
                filter=Filter(must={"zone": "geo"}),
                limit=5,
                offset=10,
                highlight=True,
            )
        )
        assert body["size"] == 5
        assert body["from_"] == 10
        assert body["query"]["bool"]["filter"] == [{"bool": {"filter": [{"term": {"zone": "geo"}}]}}]
        assert "highlight" in body


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def es(client: MagicMock) -> ElasticsearchDocumentStore:
    return ElasticsearchDocumentStore(ElasticsearchConfig(), client=client)


class TestStoreCalls:
    def test_ensure_existing_namespace(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.indices.exists.return_value = True
        assert es.ensure_namespace("kg@geo", NamespaceKind.ENTITIES) is False
        client.indices.create.assert_not_called()

    def test_ensure_creates_with_mapping(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.indices.exists.return_value = False
        assert es.ensure_namespace("kg-relations", NamespaceKind.RELATIONS) is True
        kwargs = client.indices.create.call_args.kwargs
        assert kwargs["index"] == "kg-relations"
        assert kwargs["mappings"]["properties"]["fromZone"] == {"type": "keyword"}

    def test_index_waits_for_refresh(self, es: ElasticsearchDocumentStore, client: MagicMock):
        es.index("kg@geo", "entity:Paris", {"name": "Paris"})
        client.index.assert_called_once_with(
            index="kg@geo", id="entity:Paris", document={"name": "Paris"}, refresh="wait_for"
        )

    def test_update_is_scripted(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.update.return_value = {"get": {"_source": {"name": "Paris", "readCount": 3}}}
        doc = es.update("kg@geo", "entity:Paris", set={"lastRead": "now"}, increment={"readCount": 1})
        assert doc == {"name": "Paris", "readCount": 3}
        kwargs = client.update.call_args.kwargs
        assert kwargs["script"]["params"] == {"set": {"lastRead": "now"}, "inc": {"readCount": 1}, "append": {}}
        assert kwargs["refresh"] == "wait_for"
        assert kwargs["source"] is True

    def test_search_parses_hits(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.search.return_value = {
            "hits": {
                "total": {"value": 1},
                "hits": [{"_id": "entity:Paris", "_score": 2.5, "_source": {"name": "Paris"}}],
            }
        }
        result = es.search("kg@geo", SearchRequest(intent=QueryIntent(QueryKind.EXACT_NAME, "Paris")))
        assert result.total == 1
        assert result.hits[0].id == "entity:Paris"
        assert result.hits[0].score == 2.5
        assert result.hits[0].highlights is None

    def test_aggregate(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.search.return_value = {
            "aggregations": {"buckets": {"buckets": [{"key": "city", "doc_count": 2}]}}
        }
        assert es.aggregate("kg@geo", "entityType") == {"city": 2}
        assert client.search.call_args.kwargs["aggs"] == {"buckets": {"terms": {"field": "entityType", "size": 100}}}

    def test_delete_by_query(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.delete_by_query.return_value = {"deleted": 4}
        assert es.delete_by_query("kg-relations", Filter(must={"fromZone": "geo"})) == 4

    def test_list_namespaces(self, es: ElasticsearchDocumentStore, client: MagicMock):
        client.indices.get.return_value = {"kg@geo": {}, "kg@work": {}}
        assert es.list_namespaces("kg@") == ["kg@geo", "kg@work"]
