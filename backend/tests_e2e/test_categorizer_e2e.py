import pytest
import logging

from minddump.categorizer import categorize_transcript, get_categorizer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_llm_backend_reachable():
    """Verify that the configured language model backend answers."""
    assert await get_categorizer().health(), "LLM backend unreachable"


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_categorize_workday_dump():
    """A realistic brain dump lands in the expected categories."""
    transcript = (
        "Long day. I finally shipped the billing migration, which feels great. "
        "I still need to email Sarah about the quarterly budget and book the dentist. "
        "I can't decide whether to take the team lead role or stay on the platform work. "
        "And I'm a bit anxious about the performance review next week."
    )

    logger.info("Categorizing %d chars", len(transcript))
    categories = await categorize_transcript(transcript)
    logger.info("Categories: %s", categories.model_dump())

    assert categories.actions, "Expected at least one action"
    assert categories.decisions, "Expected at least one pending decision"
    assert categories.worries, "Expected at least one worry"
    assert categories.wins, "Expected at least one win"


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_categorize_single_worry():
    categories = await categorize_transcript("I'm worried the roof will leak again when it rains this weekend.")
    assert categories.worries
    assert all(isinstance(item, str) and item for item in categories.worries)
