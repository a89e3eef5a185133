"""
Shared pytest fixtures for competition engine tests.

Running tests:
    pytest tests/                  - full suite
    pytest tests/ -m "not slow"   - fast subset
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from filelock import FileLock

from competition.config import RankingConfigBuilder
from competition.models import FINISHED, Match, Pair, Score


@pytest.fixture
def client():
    """Create a test client."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the app at an empty temporary data directory."""
    import app as app_module

    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    monkeypatch.setattr(app_module, '_data_lock', FileLock(str(data_dir / '.lock'), timeout=10))
    return data_dir


@pytest.fixture
def classic_config():
    return RankingConfigBuilder('classic').build()


@pytest.fixture
def pozo_config():
    return RankingConfigBuilder('pozo').with_courts(2).build()


def finished(round_number, pair1, pair2, points, court=None, sets=None):
    """Build a finished match with the given awarded points."""
    if isinstance(pair1, tuple):
        pair1 = Pair(*pair1)
    if isinstance(pair2, tuple):
        pair2 = Pair(*pair2)
    score = Score(sets=sets) if sets else Score(points_scored=points)
    return Match(round_number, pair1, pair2, court=court, status=FINISHED, score=score, points=points)
