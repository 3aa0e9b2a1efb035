"""Process-wide service wiring.

build_services() constructs every component once, from Settings and an
optional LLM override, and hands back one Services bundle. The HTTP app,
the MCP server and the demo seeder all go through it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from voiceforge.agent import Orchestrator, Toolbox
from voiceforge.config import Settings
from voiceforge.context import ContextManager, SummaryScheduler
from voiceforge.fingerprint import FingerprintCache, FingerprintExtractor
from voiceforge.llm import LLM, build_llm
from voiceforge.models import ExemplarText, utcnow
from voiceforge.monitor import AgentMonitor
from voiceforge.patterns import PatternAnalyzer, PatternLearner
from voiceforge.pipeline import GenerationPipeline, Validator
from voiceforge.semantic import KnowledgeMapBuilder, KnowledgeMapCache, SemanticResolver
from voiceforge.storage import Storage


@dataclass
class Services:
    settings: Settings
    storage: Storage
    llm: LLM
    fingerprints: FingerprintCache
    knowledge: KnowledgeMapCache
    resolver: SemanticResolver
    analyzer: PatternAnalyzer
    learner: PatternLearner
    pipeline: GenerationPipeline
    toolbox: Toolbox
    monitor: AgentMonitor
    context: ContextManager
    scheduler: SummaryScheduler
    orchestrator: Orchestrator

    def add_exemplars(self, user_id: str, texts: list[ExemplarText]) -> int:
        """Ingest texts and drop every artifact derived from the old corpus."""
        size = self.storage.add_exemplar_texts(user_id, texts)
        self.fingerprints.invalidate(user_id)
        self.knowledge.invalidate(user_id)
        return size


def build_services(
    settings: Settings,
    llm: LLM | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    storage = Storage(settings.data_dir)
    llm = llm or build_llm(settings.llm)

    fingerprints = FingerprintCache(storage, FingerprintExtractor(storage, llm), clock=clock)
    knowledge = KnowledgeMapCache(storage, KnowledgeMapBuilder(storage, llm), clock=clock)
    resolver = SemanticResolver(knowledge, llm)
    analyzer = PatternAnalyzer(storage, storage, llm)
    pipeline = GenerationPipeline(
        llm, fingerprints, storage, Validator(llm, settings.validation), patterns=storage,
    )
    toolbox = Toolbox(storage, fingerprints, knowledge, resolver, analyzer, pipeline)
    monitor = AgentMonitor(storage)
    context = ContextManager(storage, llm)
    scheduler = SummaryScheduler(context)
    orchestrator = Orchestrator(llm, toolbox, storage, monitor, scheduler)

    return Services(
        settings=settings,
        storage=storage,
        llm=llm,
        fingerprints=fingerprints,
        knowledge=knowledge,
        resolver=resolver,
        analyzer=analyzer,
        learner=PatternLearner(storage),
        pipeline=pipeline,
        toolbox=toolbox,
        monitor=monitor,
        context=context,
        scheduler=scheduler,
        orchestrator=orchestrator,
    )
