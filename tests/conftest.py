import numpy as np
import pytest

from overlaysync.config_loader import ConfigLoader
from overlaysync.models import AudioBuffer
from overlaysync.timing_store import TimingStore
from overlaysync.unit_extractor import DocumentUnitExtractor


def _sentence(sentence_id, words):
    return {
        "id": sentence_id,
        "level": "sentence",
        "children": [
            {"id": f"{sentence_id}_w{i}", "level": "word", "text": word}
            for i, word in enumerate(words, start=1)
        ],
    }


def make_document():
    return {
        "pages": [
            {
                "number": 1,
                "nodes": [
                    {
                        "id": "page1_p1",
                        "level": "paragraph",
                        "children": [
                            _sentence("page1_p1_s1", ["Hi", "there"]),
                            _sentence("page1_p1_s2", ["The", "cat", "sat"]),
                            _sentence("page1_p1_s3", ["It", "was", "warm"]),
                        ],
                    }
                ],
            },
            {
                "number": 2,
                "nodes": [
                    {
                        "id": "page2_p1",
                        "level": "paragraph",
                        "children": [_sentence("page2_p1_s1", ["The", "end"])],
                    }
                ],
            },
        ]
    }


@pytest.fixture
def document():
    return make_document()


@pytest.fixture
def units(document):
    return DocumentUnitExtractor().extract(document).units


@pytest.fixture
def store(units):
    return TimingStore(units, sibling_tolerance=0.05)


@pytest.fixture
def config():
    return ConfigLoader.with_defaults({})


@pytest.fixture
def loud_audio():
    """Ten seconds at 1kHz, loud everywhere except a quiet sample at 1.05s."""
    samples = np.full(10000, 0.5, dtype=np.float32)
    samples[1050] = 0.01
    return AudioBuffer(sample_rate=1000, samples=samples)
