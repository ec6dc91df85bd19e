"""Link-graph scoring: internal PageRank, JuiceLinkScore and juice flow.

All functions accept the run's edges either as a flat iterable of
:class:`~app.models.link.LinkEdge` or as the ``{target_url: [edges]}``
mapping the crawler accumulates.
"""

import logging
import math
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from app.exceptions import RankingError
from app.models.analysis_response import JuiceFlow, JuiceFlowLink, JuiceFlowNode
from app.models.link import LinkEdge

logger = logging.getLogger(__name__)

EdgeInput = Union[Iterable[LinkEdge], Mapping[str, List[LinkEdge]]]


class PageRankParams(NamedTuple):
    iterations: int = 20
    damping: float = 0.85
    tolerance: float = 1e-4
    normalize: bool = True


DEFAULT_PAGERANK_PARAMS = PageRankParams()

DEFAULT_CONTEXT_WEIGHTS: Dict[str, float] = {
    # Content
    "paragraph": 1.0,
    "content": 0.9,
    "content-main": 1.0,
    "intext": 1.0,
    # Navigation
    "menu": 0.6,
    "header": 0.5,
    "footer": 0.3,
    "sidebar": 0.4,
    # Interactive
    "button": 0.7,
    "CTA": 0.8,
    # Media
    "image": 0.6,
    # Metadata
    "breadcrumb": 0.7,
    "author": 0.5,
    "taxonomy": 0.6,
    "default": 0.5,
}

MAX_JUICE_SCORE = 10.0
_LINK_COUNT_FACTOR_CAP = 1.5


def flatten_edges(edges: EdgeInput) -> List[LinkEdge]:
    if isinstance(edges, Mapping):
        return [edge for group in edges.values() for edge in group]
    return list(edges)


def _weight(context: str, weights: Mapping[str, float]) -> float:
    if context in weights:
        return weights[context]
    return weights.get("default", DEFAULT_CONTEXT_WEIGHTS["default"])


def _check_params(iterations: int, damping: float, tolerance: float) -> None:
    if iterations < 1:
        raise RankingError(f"PageRank needs at least one iteration, got {iterations}")
    if not 0 <= damping < 1:
        raise RankingError(f"Damping factor must be in [0, 1), got {damping}")
    if tolerance < 0:
        raise RankingError(f"Tolerance must be positive, got {tolerance}")


def compute_pagerank(
    edges: EdgeInput,
    iterations: int = DEFAULT_PAGERANK_PARAMS.iterations,
    damping: float = DEFAULT_PAGERANK_PARAMS.damping,
    tolerance: float = DEFAULT_PAGERANK_PARAMS.tolerance,
    normalize: bool = DEFAULT_PAGERANK_PARAMS.normalize,
    pages: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """Iterative PageRank over the link graph.

    Nodes are every edge endpoint plus the optional *pages* (isolated pages
    then receive ``(1 - damping) / N``).  A page's outdegree is its number of
    distinct targets; parallel edges count once.  Iteration stops early once
    no score moves by *tolerance* or more.

    With *normalize* the scores are min-max rescaled to [0, 1] (left as they
    are when all scores are equal).  Scores are rounded to 6 decimals.

    Raises:
        RankingError: on invalid parameters.
    """
    _check_params(iterations, damping, tolerance)

    outlinks: Dict[str, set] = {}
    inlinks: Dict[str, set] = {}
    nodes = set(pages or ())
    for edge in flatten_edges(edges):
        nodes.add(edge.from_url)
        nodes.add(edge.to_url)
        outlinks.setdefault(edge.from_url, set()).add(edge.to_url)
        inlinks.setdefault(edge.to_url, set()).add(edge.from_url)

    if not nodes:
        return {}

    order = sorted(nodes)
    total = len(order)
    rank = {url: 1.0 / total for url in order}
    sources = {url: sorted(inlinks.get(url, ())) for url in order}

    for iteration in range(iterations):
        new_rank = {}
        max_delta = 0.0
        for url in order:
            incoming = sum(rank[src] / (len(outlinks.get(src, ())) or 1) for src in sources[url])
            value = (1 - damping) / total + damping * incoming
            new_rank[url] = value
            max_delta = max(max_delta, abs(value - rank[url]))
        rank = new_rank
        if max_delta < tolerance:
            logger.debug("PageRank converged after %d iterations", iteration + 1)
            break

    if normalize:
        low, high = min(rank.values()), max(rank.values())
        if high > low:
            rank = {url: (value - low) / (high - low) for url, value in rank.items()}

    return {url: round(value, 6) for url, value in rank.items()}


def compute_juice_scores(
    edges: EdgeInput,
    weights: Optional[Mapping[str, float]] = None,
    normalize: bool = True,
    pages: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """JuiceLinkScore of every link target.

    ``sum(importance * weight) * min(1 + ln(n) / 10, 1.5) * (1 + max_link_juice / 2)``
    where *n* is the target's inbound edge count.  With *normalize* the
    score is clamped to [0, 10].  Pages listed in *pages* without inbound
    edges score 0.
    """
    weights = DEFAULT_CONTEXT_WEIGHTS if weights is None else weights
    by_target: Dict[str, List[LinkEdge]] = {}
    for edge in flatten_edges(edges):
        by_target.setdefault(edge.to_url, []).append(edge)

    scores: Dict[str, float] = {url: 0.0 for url in pages or ()}
    for target, inbound in by_target.items():
        link_juice = [edge.importance * _weight(edge.context_type, weights) for edge in inbound]
        count_factor = min(1 + math.log(len(inbound)) / 10, _LINK_COUNT_FACTOR_CAP)
        importance_factor = 1 + max(link_juice) / 2
        score = sum(link_juice) * count_factor * importance_factor
        if normalize:
            score = max(0.0, min(MAX_JUICE_SCORE, score))
        scores[target] = round(score, 4)
    return scores


def compute_juice_flow(
    edges: EdgeInput,
    page_rank: Mapping[str, float],
    weights: Optional[Mapping[str, float]] = None,
) -> JuiceFlow:
    """Graph of pages (with PageRank and link counts) and weighted links."""
    weights = DEFAULT_CONTEXT_WEIGHTS if weights is None else weights
    nodes: Dict[str, JuiceFlowNode] = {}
    links: List[JuiceFlowLink] = []
    for edge in flatten_edges(edges):
        for url in (edge.to_url, edge.from_url):
            if url not in nodes:
                nodes[url] = JuiceFlowNode(id=url, page_rank=page_rank.get(url, 0.0))
        nodes[edge.from_url].links_out += 1
        nodes[edge.to_url].links_in += 1
        links.append(
            JuiceFlowLink(
                source=edge.from_url,
                target=edge.to_url,
                value=round(edge.importance * _weight(edge.context_type, weights), 4),
                context=edge.context_type,
            )
        )
    return JuiceFlow(nodes=list(nodes.values()), links=links)


def top_pages(scores: Mapping[str, float], limit: int = 10) -> List[Tuple[str, float]]:
    """Highest-scored pages first; equal scores sorted by URL."""
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:limit]


def dispersion(scores: Mapping[str, float]) -> float:
    """Population standard deviation of the scores (0 for an empty map)."""
    values = list(scores.values())
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((value - mean) ** 2 for value in values) / len(values))


class RankingEngine:
    """PageRank / JuiceLinkScore with fixed parameters, custom weights and a memo cache.

    PageRank results are cached by the set of distinct ``(source, target)``
    pairs, the extra pages and the parameters.
    """

    def __init__(
        self,
        params: PageRankParams = DEFAULT_PAGERANK_PARAMS,
        weights: Optional[Mapping[str, float]] = None,
    ):
        _check_params(params.iterations, params.damping, params.tolerance)
        self.params = params
        self._custom_weights: Dict[str, float] = {}
        self._cache: Dict[tuple, Dict[str, float]] = {}
        if weights:
            self.set_custom_weights(weights)

    @property
    def weights(self) -> Dict[str, float]:
        return {**DEFAULT_CONTEXT_WEIGHTS, **self._custom_weights}

    def set_custom_weights(self, weights: Mapping[str, float]) -> None:
        """Replace the custom context weights; values are clamped to [0, 1]."""
        self._custom_weights = {}
        for context, value in weights.items():
            try:
                weight = float(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric weight %r for context %s", value, context)
                continue
            self._custom_weights[context] = max(0.0, min(1.0, weight))

    def reset_custom_weights(self) -> None:
        self._custom_weights = {}

    def pagerank(self, edges: EdgeInput, pages: Optional[Iterable[str]] = None) -> Dict[str, float]:
        edges = flatten_edges(edges)
        extra = tuple(sorted(set(pages or ())))
        key = (tuple(sorted({(e.from_url, e.to_url) for e in edges})), extra, self.params)
        cached = self._cache.get(key)
        if cached is None:
            cached = compute_pagerank(edges, *self.params, pages=extra)
            self._cache[key] = cached
        return dict(cached)

    def juice_scores(
        self, edges: EdgeInput, normalize: bool = True, pages: Optional[Iterable[str]] = None
    ) -> Dict[str, float]:
        return compute_juice_scores(edges, self.weights, normalize, pages)

    def juice_flow(self, edges: EdgeInput, page_rank: Mapping[str, float]) -> JuiceFlow:
        return compute_juice_flow(edges, page_rank, self.weights)

    def clear_cache(self) -> None:
        self._cache.clear()
