"""OpenAI fine-tuning calls: upload the training file, start and list jobs."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class SubmittedJob:
    file_id: str
    job_id: str
    status: str


def _provider_error(action: str, error: Exception) -> ProviderError:
    message = str(error)
    if isinstance(error, openai.AuthenticationError) or "API key" in message:
        return ProviderError("OpenAI API key not configured", status_code=500)
    if isinstance(error, openai.RateLimitError) or "quota" in message:
        return ProviderError("OpenAI API quota exceeded", status_code=429)
    return ProviderError(f"Failed to {action}", status_code=500)


class FineTuningClient:
    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-2024-08-06", client: Optional[OpenAI] = None):
        self.model = model
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> OpenAI:
        # created lazily so the app starts without a key
        if self._client is None:
            if not self._api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set")
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def submit(self, jsonl: str, filename: str = "training-data.jsonl") -> SubmittedJob:
        """Upload a JSONL training file and start a fine-tuning job on it."""
        try:
            uploaded = self.client.files.create(
                file=(filename, jsonl.encode("utf-8"), "application/jsonl"),
                purpose="fine-tune",
            )
            job = self.client.fine_tuning.jobs.create(
                training_file=uploaded.id,
                model=self.model,
            )
        except openai.OpenAIError as e:
            logger.error(f"Error submitting to OpenAI: {e}")
            raise _provider_error("submit to OpenAI", e) from e

        logger.info(f"Fine-tuning job {job.id} started on file {uploaded.id}")
        return SubmittedJob(file_id=uploaded.id, job_id=job.id, status=job.status)

    def list_jobs(self) -> List[Dict[str, Any]]:
        try:
            page = self.client.fine_tuning.jobs.list()
        except openai.OpenAIError as e:
            logger.error(f"Error fetching fine-tuning jobs: {e}")
            raise _provider_error("fetch fine-tuning jobs", e) from e
        return [job.model_dump() for job in page.data]
