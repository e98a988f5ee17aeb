"""Cohort ranking, result views and statistics over compiled reports."""

import logging
import math

from grading import (
    DEFAULT_LEVEL_SCALE, STATUS_PASS, STATUS_RETAKE,
    check_term, classify_level, default_level_names, failure_details, report_percentage, term_status,
)

logger = logging.getLogger(__name__)

RANK_WORDS = ('الأول', 'الثاني', 'الثالث', 'الرابع', 'الخامس', 'السادس', 'السابع', 'الثامن', 'التاسع', 'العاشر')

VIEW_MODES = ('all', 'top', 'failed')


def rank_label(rank):
    """Ordinal word for ranks 1-10, the bare numeral otherwise."""
    if 1 <= rank <= len(RANK_WORDS):
        return RANK_WORDS[rank - 1]
    return str(rank)


def _metric_selector(term):
    if callable(term):
        return term
    check_term(term)
    return lambda report: report_percentage(report, term)


def _is_nan(value):
    return isinstance(value, float) and math.isnan(value)


def rank_reports(reports, term='final'):
    """Rank a cohort by the selected percentage; equal values share a rank (1, 1, 3)."""
    metric = _metric_selector(term)
    values = [metric(r) for r in reports]

    ordered = sorted((v for v in values if not _is_nan(v)), reverse=True)
    rank_by_value = {}
    for index, value in enumerate(ordered, 1):
        rank_by_value.setdefault(value, index)

    ranked = []
    for report, value in zip(reports, values):
        # NaN never equals anything, so it is never found in the ordering.
        rank = 0 if _is_nan(value) else rank_by_value[value]
        entry = dict(report)
        entry['rank'] = rank
        entry['rank_label'] = rank_label(rank)
        if not callable(term):
            entry['term_status'] = term_status(report, term)
            entry['failure_details'] = failure_details(report)
        ranked.append(entry)
    return ranked


def filter_results(ranked, view='all', limit=10):
    """'all' as is, 'top' passed students by rank, 'failed' students needing a retake."""
    if view not in VIEW_MODES:
        raise ValueError(f"Unknown results view: {view}")
    if view == 'top':
        passed = [r for r in ranked if r.get('term_status') == STATUS_PASS]
        return sorted(passed, key=lambda r: r.get('rank') or 0)[:limit]
    if view == 'failed':
        return [r for r in ranked if r.get('term_status') == STATUS_RETAKE]
    return list(ranked)


def cohort_statistics(ranked, term='final'):
    check_term(term)
    total = len(ranked)
    passed = sum(1 for r in ranked if r.get('term_status') == STATUS_PASS)

    level_names = default_level_names()
    lowest = min(DEFAULT_LEVEL_SCALE, key=lambda t: t['min_percent'])['name']
    level_counts = {name: 0 for name in level_names}
    for report in ranked:
        name = classify_level(report_percentage(report, term), 100)['name']
        # Below every threshold (negative scores) still counts as the lowest tier.
        level_counts[name if name in level_counts else lowest] += 1

    logger.debug('Statistics for %d students (term=%s): %d passed', total, term, passed)
    return {
        'total': total,
        'passed': passed,
        'failed': total - passed,
        'pass_rate': (passed / total) * 100 if total > 0 else 0,
        'level_counts': level_counts,
    }
