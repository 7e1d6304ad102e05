from .z3_engine.encoder import PredicateEncoder, ValueSort, NotEncodable
from .z3_engine.sampler import Sampler, SampleResult, SampleStatus, ExclusionStore

__all__ = [
    "PredicateEncoder",
    "ValueSort",
    "NotEncodable",
    "Sampler",
    "SampleResult",
    "SampleStatus",
    "ExclusionStore",
]
