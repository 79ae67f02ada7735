"""
Tests for the postprocessing pipeline stages.
"""

from typing import List

import pytest
from pydantic import BaseModel

from ai_scrape_guard.core.errors import InvalidJSON, PostprocessingError, ValidationError
from ai_scrape_guard.core.ledger import CostLedger
from ai_scrape_guard.core.orchestrator import CompletionOrchestrator
from ai_scrape_guard.core.postprocessors import (
    NUDGE_INSTRUCTION,
    HallucinationChecker,
    JSONPostprocessor,
    PipelineContext,
    PostprocessorPipeline,
    SchemaValidator,
    check_data_in_document,
)
from ai_scrape_guard.core.responses import Response
from ai_scrape_guard.core.retry import RetryPolicy

from fakes import TEST_MODEL_TABLE, ScriptedProvider, completion


class Address(BaseModel):
    city: str


class Person(BaseModel):
    name: str
    age: int
    addresses: List[Address] = []


def nudge_context(outcomes):
    provider = ScriptedProvider(outcomes)
    orchestrator = CompletionOrchestrator(
        provider=provider,
        ledger=CostLedger(max_cost=1.0),
        models=("small",),
        retry=RetryPolicy(wait_seconds=0),
        model_table=TEST_MODEL_TABLE,
    )
    return PipelineContext(orchestrator=orchestrator, schema_description='{"name": "str"}'), provider


class TestJSONPostprocessor:
    """Test JSON parsing and repair."""

    def test_valid_json_needs_no_extra_call(self):
        context, provider = nudge_context([])
        response = Response(data='{"name": "Ann"}')

        JSONPostprocessor().apply(response, context)

        assert response.data == {"name": "Ann"}
        assert provider.calls == []

    def test_strips_markdown_fence(self):
        response = Response(data='```json\n[{"a": 1}]\n```')
        JSONPostprocessor(nudge=False).apply(response, PipelineContext())
        assert response.data == [{"a": 1}]

    def test_non_string_data_passes_through(self):
        response = Response(data={"already": "parsed"})
        JSONPostprocessor(nudge=False).apply(response, PipelineContext())
        assert response.data == {"already": "parsed"}

    def test_invalid_json_without_nudge(self):
        response = Response(data="{'name': 'Ann'}")

        with pytest.raises(InvalidJSON) as exc_info:
            JSONPostprocessor(nudge=False).apply(response, PipelineContext())

        assert exc_info.value.text == "{'name': 'Ann'}"

    def test_nudge_makes_exactly_one_extra_call(self):
        context, provider = nudge_context([completion('{"name": "Ann"}')])
        response = Response(data="{name: Ann,}")

        JSONPostprocessor().apply(response, context)

        assert response.data == {"name": "Ann"}
        assert len(provider.calls) == 1
        messages = provider.calls[0]["messages"]
        assert messages[0] == {"role": "system", "content": NUDGE_INSTRUCTION + '{"name": "str"}'}
        assert messages[1] == {"role": "user", "content": "{name: Ann,}"}

    def test_nudge_cost_recorded_in_response(self):
        context, _ = nudge_context([completion('{"name": "Ann"}')])
        response = Response(data="{name: Ann,}")

        JSONPostprocessor().apply(response, context)

        assert len(response.api_responses) == 1
        assert response.total_cost == pytest.approx(0.02)

    def test_nudge_still_invalid(self):
        context, provider = nudge_context([completion("still {not json")])
        response = Response(data="{name: Ann,}")

        with pytest.raises(InvalidJSON, match="after repair") as exc_info:
            JSONPostprocessor().apply(response, context)

        assert exc_info.value.text == "still {not json"
        assert len(provider.calls) == 1

    def test_nudge_without_orchestrator(self):
        with pytest.raises(PostprocessingError, match="requires an orchestrator"):
            JSONPostprocessor().apply(Response(data="nope"), PipelineContext())


class TestSchemaValidator:
    """Test typed schema validation."""

    def test_dict_becomes_instance(self):
        response = Response(data={"name": "Ann", "age": 30})
        SchemaValidator(Person).apply(response, PipelineContext())
        assert response.data == Person(name="Ann", age=30)

    def test_list_becomes_instances(self):
        response = Response(data=[{"name": "Ann", "age": 30}, {"name": "Bob", "age": 4}])
        SchemaValidator(Person).apply(response, PipelineContext())
        assert [person.name for person in response.data] == ["Ann", "Bob"]

    def test_error_path_for_dict(self):
        response = Response(data={"name": "Ann", "age": "old"})

        with pytest.raises(ValidationError) as exc_info:
            SchemaValidator(Person).apply(response, PipelineContext())

        assert exc_info.value.path == ".age"

    def test_error_path_includes_list_index(self):
        response = Response(data=[
            {"name": "Ann", "age": 30},
            {"name": "Bob", "age": 4, "addresses": [{"city": "X"}, {}]},
        ])

        with pytest.raises(ValidationError) as exc_info:
            SchemaValidator(Person).apply(response, PipelineContext())

        assert exc_info.value.path == "[1].addresses[1].city"

    def test_rejects_unparsed_data(self):
        with pytest.raises(PostprocessingError, match="expecting a dict or list"):
            SchemaValidator(Person).apply(Response(data="{}"), PipelineContext())


class TestHallucinationChecker:
    """Test verbatim presence of extracted strings."""

    DOCUMENT = "<p>Ann</p><ul><li>Paris</li><li>Oslo</li><li>Rome</li></ul>"

    def test_passes_when_all_strings_present(self):
        data = {"name": "Ann", "address": [{"city": "Paris"}, {"city": "Oslo"}], "age": 30}
        check_data_in_document(self.DOCUMENT, data)

    def test_missing_top_level_string(self):
        with pytest.raises(PostprocessingError) as exc_info:
            check_data_in_document(self.DOCUMENT, {"name": "Bob"})

        assert exc_info.value.path == ".name"
        assert exc_info.value.value == "Bob"
        assert str(exc_info.value) == "Data not found in document: Bob (.name)"

    def test_missing_nested_string(self):
        data = {"name": "Ann", "address": [{"city": "Paris"}, {"city": "Oslo"}, {"city": "Lima"}]}

        with pytest.raises(PostprocessingError) as exc_info:
            check_data_in_document(self.DOCUMENT, data)

        assert exc_info.value.path == ".address[2].city"

    def test_checks_model_instances(self):
        person = Person(name="Ann", age=1, addresses=[Address(city="Lima")])

        with pytest.raises(PostprocessingError) as exc_info:
            check_data_in_document(self.DOCUMENT, person)

        assert exc_info.value.path == ".addresses[0].city"

    def test_requires_document(self):
        assert HallucinationChecker.requires_document
        with pytest.raises(PostprocessingError, match="needs the whole document"):
            HallucinationChecker().apply(Response(data={"a": "b"}), PipelineContext())

    def test_stage_uses_context_document(self):
        response = Response(data={"name": "Ann"})
        context = PipelineContext(document_text=self.DOCUMENT)
        assert HallucinationChecker().apply(response, context) is response


class TestPostprocessorPipeline:
    """Test stage ordering and composition."""

    def test_runs_stages_in_order(self):
        pipeline = PostprocessorPipeline([JSONPostprocessor(nudge=False), SchemaValidator(Person)])
        response = Response(data='{"name": "Ann", "age": 3}')

        pipeline.apply(response, PipelineContext())

        assert response.data == Person(name="Ann", age=3)

    def test_first_failure_aborts(self):
        pipeline = PostprocessorPipeline([JSONPostprocessor(nudge=False), SchemaValidator(Person)])

        with pytest.raises(InvalidJSON):
            pipeline.apply(Response(data="nope"), PipelineContext())

    def test_requires_document(self):
        assert not PostprocessorPipeline([JSONPostprocessor()]).requires_document
        assert PostprocessorPipeline([JSONPostprocessor(), HallucinationChecker()]).requires_document

    def test_stages_are_fixed(self):
        stages = [JSONPostprocessor()]
        pipeline = PostprocessorPipeline(stages)
        stages.append(HallucinationChecker())
        assert len(pipeline.stages) == 1
