"""Construct external clients and the components built on them, once per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from anthropic import Anthropic
from openai import OpenAI
from qdrant_client import QdrantClient

from lecturechat.config import Settings
from lecturechat.ingestion.embeddings import Embedder
from lecturechat.ingestion.jobs import PipelineJobQueue
from lecturechat.ingestion.media import MediaNormalizer
from lecturechat.ingestion.pipeline import ProcessingPipeline
from lecturechat.ingestion.storage import SupabaseRecordStore, get_supabase_client
from lecturechat.ingestion.transcription import build_transcriber
from lecturechat.retrieval.generation import AnswerEngine, ClaudeAnswerGenerator
from lecturechat.retry import RetryPolicy
from lecturechat.vectorstore.index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: SupabaseRecordStore
    index: VectorIndex
    embedder: Embedder
    normalizer: MediaNormalizer
    pipeline: ProcessingPipeline
    jobs: PipelineJobQueue
    answers: AnswerEngine


def build_services(settings: Settings) -> Services:
    retry_policy = RetryPolicy.from_settings(settings)

    openai_client = OpenAI(api_key=settings.openai_api_key or None)
    anthropic_client = Anthropic(api_key=settings.anthropic_api_key or None)
    qdrant_client = QdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key or None,
        timeout=settings.qdrant_timeout,
    )

    store = SupabaseRecordStore(get_supabase_client(settings))
    index = VectorIndex.from_settings(settings, qdrant_client, retry_policy)
    embedder = Embedder.from_settings(settings, openai_client, retry_policy)
    normalizer = MediaNormalizer(temp_dir=settings.temp_dir)
    transcriber = build_transcriber(settings, openai_client, retry_policy)

    pipeline = ProcessingPipeline(store, normalizer, transcriber, embedder, index, settings)
    generator = ClaudeAnswerGenerator(
        anthropic_client,
        model=settings.llm_model,
        max_tokens=settings.answer_max_tokens,
        temperature=settings.answer_temperature,
        retry_policy=retry_policy,
    )

    logger.info(
        "Services ready (transcription=%s, embeddings=%s, collection=%s)",
        settings.transcription_provider, settings.embedding_model, settings.qdrant_collection,
    )
    return Services(
        settings=settings,
        store=store,
        index=index,
        embedder=embedder,
        normalizer=normalizer,
        pipeline=pipeline,
        jobs=PipelineJobQueue(pipeline, max_workers=settings.pipeline_workers),
        answers=AnswerEngine(store, embedder, index, generator),
    )
