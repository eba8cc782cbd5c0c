#!/usr/bin/env python3
"""
Query Learning Analysis

Summarizes the query history to find what to improve:
- Queries that needed LLM fallback (patterns missing)
- Entity mismatches (asked about X, answered about Y)
- Low confidence classifications
- Negative feedback
- Pattern suggestions for intents with gaps

Usage:
    python scripts/analyze_query_learning.py
    python scripts/analyze_query_learning.py --days 30 --db data/sportbot_queries.db
    python scripts/analyze_query_learning.py --json
"""

import argparse
import json
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config  # noqa: E402
from db import get_db  # noqa: E402
from intelligence import InsightGenerator, PatternSuggester  # noqa: E402
from logging_config import configure_logging  # noqa: E402
from query_classifier import QueryIntent  # noqa: E402
from query_tracker import QueryTracker  # noqa: E402


def intent_distribution(db_path=None, limit=15):
    with get_db(db_path) as conn:
        rows = conn.execute('''
            SELECT detected_intent, COUNT(*) AS count
            FROM query_records
            WHERE detected_intent IS NOT NULL
            GROUP BY detected_intent
            ORDER BY count DESC
            LIMIT ?
        ''', (limit,)).fetchall()
    return [(r['detected_intent'], r['count']) for r in rows]


def build_report(db_path=None, window_days=None):
    window_days = window_days or Config.LEARNING_THRESHOLDS.window_days
    generator = InsightGenerator(db_path)
    suggester = PatternSuggester(db_path)
    tracker = QueryTracker(db_path, workers=1)
    try:
        insights = generator.generate_learning_insights(window_days)

        suggestions = {}
        for intent in QueryIntent:
            if intent is QueryIntent.UNKNOWN:
                continue
            patterns = suggester.suggest_patterns(intent)
            if patterns:
                suggestions[intent.value] = patterns

        return {
            'window_days': window_days,
            'stats': generator.get_query_stats(),
            'intents': intent_distribution(db_path),
            'insights': [i.to_dict() for i in insights],
            'suggestions': suggestions,
            'attention': tracker.get_queries_needing_attention(limit=15, window_days=window_days),
        }
    finally:
        tracker.shutdown()


def print_report(report):
    stats = report['stats']
    print("\nQUERY LEARNING ANALYSIS")
    print('=' * 60)

    print("\nBASIC STATS\n")
    print(f"Total queries: {stats['total_queries']:,}")
    print(f"Last 24h: {stats['last_24h']}")
    print(f"Last 7d: {stats['last_7d']}")
    print(f"Feedback: {stats['feedback_positive']} up / {stats['feedback_negative']} down")
    print(f"LLM fallback rate: {stats['llm_fallback_rate']:.1%}")
    print(f"Cache hit rate: {stats['cache_hit_rate']:.1%}")
    print(f"Entity mismatches: {stats['mismatch_count']}")

    print("\nINTENT DISTRIBUTION\n")
    for intent, count in report['intents']:
        bar = '#' * min(round(count / 10), 30)
        print(f"  {intent:<20} {count:>5} {bar}")

    print(f"\nINSIGHTS (last {report['window_days']} days)\n")
    if not report['insights']:
        print("  No issues found.")
    for insight in report['insights']:
        print(f"  [{insight['priority']}] {insight['type']}: {insight['description']}")
        if insight['query_example']:
            print(f"      e.g. \"{insight['query_example'][:60]}\"")

    if report['suggestions']:
        print("\nSUGGESTED PATTERNS\n")
        for intent, patterns in report['suggestions'].items():
            print(f"  {intent}:")
            for p in patterns:
                print(f"    {p}")

    if report['attention']:
        print("\nNEEDS ATTENTION\n")
        for q in report['attention']:
            print(f"  - \"{q['raw_query'][:50]}\" ({', '.join(q['reasons'])})")
            if q['mismatch_details']:
                print(f"      {q['mismatch_details']}")
            if q['feedback_comment']:
                print(f"      Comment: {q['feedback_comment']}")
    print()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Analyze SportBot query history for classifier improvements')
    parser.add_argument('--days', '-d', type=int, help='Analysis window in days (default: 7)')
    parser.add_argument('--db', help='SQLite database path (ignored when DATABASE_URL is set)')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')
    args = parser.parse_args()

    # The report goes to stdout; keep the console for warnings
    configure_logging(console_level=logging.WARNING)

    report = build_report(args.db, args.days)
    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)
