"""Reads review_policy.yaml into a ReviewPolicy."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from access_review.policy.models import ReviewPolicy

_logger = logging.getLogger(__name__)


def load_policy(path: str | Path) -> ReviewPolicy:
    """Load and validate the review policy file.

    A missing file raises FileNotFoundError. Unparseable YAML, a document that is not
    a mapping, or values the policy model rejects raise RuntimeError naming the file.
    An empty file yields the default policy.
    """
    policy_path = Path(path)
    if not policy_path.is_file():
        raise FileNotFoundError(f"Review policy file not found: {policy_path}")

    try:
        data = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Review policy {policy_path} is not valid YAML: {exc}") from exc

    if data is None:
        _logger.info("Review policy %s is empty; using defaults", policy_path)
        return ReviewPolicy()
    if not isinstance(data, dict):
        raise RuntimeError(
            f"Review policy {policy_path} must be a mapping, got {type(data).__name__}"
        )

    try:
        policy = ReviewPolicy.from_yaml(data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid review policy {policy_path}: {exc}") from exc

    _logger.info(
        "Loaded review policy %s (self-certification=%s, reassignment limit=%s)",
        policy_path,
        policy.self_certification.level.value,
        policy.reassignment.limit,
    )
    return policy
