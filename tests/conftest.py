"""
Shared fixtures for lesson-pack tests.

Remote collaborators are replaced with in-memory fakes:

* FakeChatClient: scripted chat-completions replies, routed by model name.
* FakeDocumentStore: Drive + Docs stand-in that tracks each document's body
  end index, inserted tables and their cell offsets, and app properties.

No test touches the network.
"""
from __future__ import annotations

import asyncio
import copy
import json
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from lessonpack.dependencies.services import get_chat_client, get_pipeline
from lessonpack.main import app
from lessonpack.models.lesson_pack import LessonPack
from lessonpack.services.agents import AgentModels, LessonAgents
from lessonpack.services.credentials import OAuthClientConfig, PublishConfig
from lessonpack.services.generator import StructuredGenerator
from lessonpack.services.pipeline import LessonPackPipeline
from lessonpack.services.pipeline_manager import pipeline_manager
from lessonpack.services.publisher import PublishResult
from lessonpack.services.renderer import utf16_len


# ---------------------------------------------------------------------------
# Sample data (camelCase, as the generation service returns it)
# ---------------------------------------------------------------------------

def _source(n: int) -> Dict[str, Any]:
    return {"title": f"Source {n}", "url": f"https://example.org/source-{n}", "note": None}


def _example(label: str, n: int) -> Dict[str, Any]:
    return {
        "label": label,
        "whatHappened": f"{label} happened.",
        "whyItMatters": f"{label} shows the mechanism in practice.",
        "howToUse": [f"Use {label} as a case study"],
        "sources": [_source(n)],
    }


def _argument(claim: str) -> Dict[str, Any]:
    return {
        "claim": claim,
        "mechanism": f"Because {claim.lower()}",
        "impacts": ["Better outcomes"],
        "stakeholders": ["Citizens"],
        "comparative": None,
        "preempts": None,
        "examples": None,
    }


def make_draft_data() -> Dict[str, Any]:
    """Synthesizer output: a complete lesson pack without inputMetadata."""
    return {
        "title": "Environment",
        "motionOrTopic": "This House would ban single-use plastics",
        "context": "Plastic waste is rising.",
        "firstPrinciples": {
            "burden": "Show the ban reduces harm",
            "metric": "Net environmental harm",
            "assumptions": ["Substitutes exist"],
            "theories": ["Externalities"],
            "tests": None,
        },
        "govCase": [_argument("Bans cut waste"), _argument("Bans shift norms")],
        "oppCase": [_argument("Bans hurt the poor"), _argument("Substitutes are worse")],
        "counterCases": None,
        "extensions": ["Global supply chains", "Informal recycling sector"],
        "rebuttalLadders": [{"target": "Bans cut waste", "ladder": ["Leakage", "Substitution"]}],
        "weighing": {
            "method": "Scale times probability",
            "adjudicatorNotes": ["Reward comparatives"],
            "commonPitfalls": ["Asserting impacts"],
            "POIAdvice": None,
            "whipAdvice": None,
        },
        "drills": ["Rebuttal sprint", "Weighing ladder"],
        "glossary": [{"term": "Externality", "def": "A cost borne by third parties"}],
        "examplesBank": [
            _example("Kenya bag ban", 1),
            _example("EU directive", 2),
            _example("Rwanda ban", 3),
        ],
        "sources": [_source(1), _source(2), _source(3)],
    }


def make_pack_data(filename: str = "notes.md", kind: str = "markdown") -> Dict[str, Any]:
    data = make_draft_data()
    data["inputMetadata"] = {"filename": filename, "kind": kind}
    return data


def make_normalized_data() -> Dict[str, Any]:
    return {"title": "Environment", "markdown": "# Environment\n\n- Plastic waste is rising."}


def make_strategist_data() -> Dict[str, Any]:
    draft = make_draft_data()
    return {
        "motionOrTopic": draft["motionOrTopic"],
        "context": draft["context"],
        "firstPrinciples": draft["firstPrinciples"],
        "govCase": draft["govCase"],
        "oppCase": draft["oppCase"],
        "extensions": draft["extensions"],
    }


def make_research_data() -> Dict[str, Any]:
    draft = make_draft_data()
    return {
        "examplesBank": draft["examplesBank"],
        "weighing": draft["weighing"],
        "drills": draft["drills"],
    }


@pytest.fixture
def pack_data() -> Dict[str, Any]:
    return make_pack_data()


@pytest.fixture
def lesson_pack(pack_data: Dict[str, Any]) -> LessonPack:
    return LessonPack.model_validate(pack_data)


# ---------------------------------------------------------------------------
# Fake chat client
# ---------------------------------------------------------------------------

def message(payload: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Assistant message whose content is *payload* (dicts are JSON-encoded)."""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return {"role": "assistant", "content": content}


Reply = Union[None, Dict[str, Any], Exception]
Responder = Callable[[str, List[Dict[str, str]]], Awaitable[Reply]]


class FakeChatClient:
    """
    Scripted chat client.

    Either pops replies from a fixed list, or delegates to an async
    *responder(model, messages)*.  Exceptions are raised instead of returned.
    Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        responder: Optional[Responder] = None,
        healthy: bool = True,
    ) -> None:
        self.replies = list(replies or [])
        self.responder = responder
        self.healthy = healthy
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, model: str, messages: List[Dict[str, str]]) -> Reply:
        self.calls.append({"model": model, "messages": copy.deepcopy(messages)})
        if self.responder is not None:
            reply = await self.responder(model, messages)
        else:
            assert self.replies, "FakeChatClient ran out of scripted replies"
            reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def check_health(self) -> bool:
        return self.healthy

    def calls_for(self, model: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["model"] == model]


TEST_MODELS = AgentModels(
    normalizer="test-normalizer",
    strategist="test-strategist",
    research="test-research",
    synthesizer="test-synthesizer",
)

STAGE_REPLIES: Dict[str, Callable[[], Dict[str, Any]]] = {
    TEST_MODELS.normalizer: make_normalized_data,
    TEST_MODELS.strategist: make_strategist_data,
    TEST_MODELS.research: make_research_data,
    TEST_MODELS.synthesizer: make_draft_data,
}


async def stage_responder(model: str, messages: List[Dict[str, str]]) -> Reply:
    """Valid output for whichever stage *model* belongs to."""
    return message(STAGE_REPLIES[model]())


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient(responder=stage_responder)


class RecordingPublisher:
    """Async publish callable that records packs and returns a fixed result."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.packs: List[LessonPack] = []

    async def __call__(self, pack: LessonPack) -> Optional[PublishResult]:
        self.packs.append(pack)
        if not self.enabled:
            return None
        n = len(self.packs)
        return PublishResult(
            doc_id=f"doc-{n}",
            doc_url=f"https://docs.google.com/document/d/doc-{n}/edit",
            fingerprint="f" * 64,
            updated=False,
        )


@pytest.fixture
def recording_publisher() -> RecordingPublisher:
    return RecordingPublisher()


def build_agents(client: FakeChatClient) -> LessonAgents:
    return LessonAgents(StructuredGenerator(client), models=TEST_MODELS, max_attempts=3)


def build_pipeline(client: FakeChatClient, publish: Callable) -> LessonPackPipeline:
    agents = build_agents(client)
    return LessonPackPipeline(agents=agents, publish=publish)


@pytest.fixture
def pipeline(chat_client: FakeChatClient, recording_publisher: RecordingPublisher) -> LessonPackPipeline:
    return build_pipeline(chat_client, recording_publisher)


def oauth_config(token_path: str) -> PublishConfig:
    """OAuth publishing config whose token lives at *token_path*."""
    return PublishConfig(
        mode="oauth",
        export_folder_id="folder-9",
        oauth=OAuthClientConfig(
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="http://localhost:8080/callback",
            token_path=token_path,
        ),
        source="GOOGLE_OAUTH_TOKEN_PATH",
    )


# ---------------------------------------------------------------------------
# Fake document store
# ---------------------------------------------------------------------------

class FakeDocumentStore:
    """
    In-memory Drive + Docs.

    A fresh document's body ends at index 2 (section break + one empty
    paragraph).  ``insertText`` and ``deleteContentRange`` move the end
    index; ``insertTable`` adds a table element whose rows take one index
    and whose cells take two (cell marker + empty paragraph).
    """

    def __init__(self) -> None:
        self.files: Dict[str, Dict[str, Any]] = {}
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.batches: Dict[str, List[List[Dict[str, Any]]]] = {}
        self._failures: Dict[str, List[Exception]] = {}
        self._next_id = 0

    # -- test helpers ---------------------------------------------------

    def fail_next(self, method: str, *errors: Exception) -> None:
        """Raise *errors*, one per call, on the next calls to *method*."""
        self._failures.setdefault(method, []).extend(errors)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method,) + args)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def seed(self, name: str, app_properties: Dict[str, str], end_index: int = 2) -> str:
        self._next_id += 1
        doc_id = f"doc-{self._next_id}"
        self.files[doc_id] = {"id": doc_id, "name": name, "appProperties": dict(app_properties)}
        self.docs[doc_id] = {"end": end_index, "tables": []}
        return doc_id

    def requests_for(self, doc_id: str) -> List[Dict[str, Any]]:
        return [req for batch in self.batches.get(doc_id, []) for req in batch]

    # -- DocumentStore --------------------------------------------------

    async def list_files(self, query: str, page_size: int = 100) -> List[Dict[str, Any]]:
        self._record("list_files", query)
        return [copy.deepcopy(f) for f in self.files.values()]

    async def create_file(self, name, parents, app_properties) -> Dict[str, Any]:
        self._record("create_file", name, parents, app_properties)
        doc_id = self.seed(name, app_properties)
        self.files[doc_id]["parents"] = parents
        return {"id": doc_id, "webViewLink": f"https://docs.google.com/document/d/{doc_id}/edit?usp=drivesdk"}

    async def get_file(self, file_id: str, fields: str = "id, webViewLink") -> Dict[str, Any]:
        self._record("get_file", file_id, fields)
        return {"id": file_id, "webViewLink": f"https://docs.google.com/document/d/{file_id}/edit?usp=drivesdk"}

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        self._record("get_document", document_id)
        doc = self.docs[document_id]
        content: List[Dict[str, Any]] = [{"startIndex": 0, "endIndex": 1, "sectionBreak": {}}]
        content.extend(copy.deepcopy(doc["tables"]))
        content.append({"startIndex": doc["end"] - 1, "endIndex": doc["end"], "paragraph": {}})
        return {"documentId": document_id, "body": {"content": content}}

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        self._record("batch_update", document_id, requests)
        doc = self.docs[document_id]
        for req in requests:
            if "insertText" in req:
                doc["end"] += utf16_len(req["insertText"]["text"])
            elif "insertPageBreak" in req:
                doc["end"] += 1
            elif "deleteContentRange" in req:
                rng = req["deleteContentRange"]["range"]
                doc["end"] -= rng["endIndex"] - rng["startIndex"]
                doc["tables"] = []
            elif "insertTable" in req:
                table = req["insertTable"]
                start = table["location"]["index"] + 1
                cursor = start + 1
                rows = []
                for _ in range(table["rows"]):
                    cursor += 1
                    cells = []
                    for _ in range(table["columns"]):
                        cells.append({"startIndex": cursor})
                        cursor += 2
                    rows.append({"tableCells": cells})
                doc["tables"].append(
                    {"startIndex": start, "endIndex": cursor + 1, "table": {"tableRows": rows}}
                )
                doc["end"] += cursor + 1 - table["location"]["index"]
        self.batches.setdefault(document_id, []).append(copy.deepcopy(requests))
        return {"documentId": document_id, "replies": [{} for _ in requests]}


@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


class SleepRecorder:
    """Drop-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


# ---------------------------------------------------------------------------
# HTTP API client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(
    chat_client: FakeChatClient, pipeline: LessonPackPipeline
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the generation client
    and pipeline dependencies overridden to use the in-memory fakes.
    """

    async def _override_chat_client():
        return chat_client

    async def _override_pipeline():
        return pipeline

    app.dependency_overrides[get_chat_client] = _override_chat_client
    app.dependency_overrides[get_pipeline] = _override_pipeline
    pipeline_manager.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await pipeline_manager.wait()
    pipeline_manager.reset()
    app.dependency_overrides.clear()
