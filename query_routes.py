"""
Query Intelligence Routes Blueprint for SportBot.

- POST /api/query/classify            classify a question (intent + entities)
- POST /api/chat/feedback             thumbs up / down on an answered query
- GET  /api/admin/query-learning      stats, attention queue, insights, pattern suggestions
- GET  /api/suggested-prompts         prompts for the chat UI

Services are looked up in app.extensions['query_intelligence'] (see
app.create_app), so tests can wire in temporary stores.
"""

from flask import Blueprint, current_app, jsonify, request
import logging

from errors import InvalidFeedbackError
from query_classifier import classify_query

logger = logging.getLogger(__name__)

query_bp = Blueprint('query_bp', __name__)

LEARNING_ACTIONS = ('stats', 'attention', 'insights', 'suggest-patterns')


def _services():
    return current_app.extensions['query_intelligence']


def _json_object():
    """Request body as a dict, or None when it is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _serialize_classification(result):
    return {
        'intent': result['intent'].value,
        'confidence': result['confidence'],
        'matched_pattern_id': result['matched_pattern_id'],
        'was_llm_classified': result['was_llm_classified'],
        'entities': result['entities'],
        'normalized_query': result['normalized_query'],
    }


@query_bp.route('/api/query/classify', methods=['POST'])
def classify():
    data = _json_object()
    if data is None:
        return jsonify({'error': 'body must be a JSON object'}), 400
    question = data.get('query') or ''
    if not isinstance(question, str):
        return jsonify({'error': 'query must be a string'}), 400
    question = question.strip()
    if not question:
        return jsonify({'error': 'query is required'}), 400

    services = _services()
    result = classify_query(question, classifier=services['classifier'], registry=services.get('registry'))
    return jsonify(_serialize_classification(result))


@query_bp.route('/api/chat/feedback', methods=['POST'])
def chat_feedback():
    data = _json_object()
    if data is None:
        return jsonify({'error': 'body must be a JSON object'}), 400
    query_id = data.get('query_id')
    if not query_id:
        return jsonify({'error': 'query_id is required'}), 400

    rating = data.get('rating')
    comment = data.get('comment') or None
    if comment is not None and not isinstance(comment, str):
        return jsonify({'error': 'comment must be a string'}), 400
    try:
        found = _services()['tracker'].record_feedback(str(query_id), rating, comment)
    except InvalidFeedbackError as e:
        return jsonify({'error': str(e)}), 400

    if not found:
        return jsonify({'error': f'Unknown query {query_id}'}), 404

    # Feedback changes which questions qualify as suggestions
    prompts = _services().get('prompts')
    if prompts is not None:
        prompts.invalidate()
    return jsonify({'success': True, 'query_id': query_id, 'rating': rating})


@query_bp.route('/api/admin/query-learning', methods=['GET'])
def query_learning():
    action = request.args.get('action', 'stats')
    if action not in LEARNING_ACTIONS:
        return jsonify({'error': f"Unknown action '{action}'", 'actions': list(LEARNING_ACTIONS)}), 400

    services = _services()
    try:
        if action == 'stats':
            return jsonify(services['insights'].get_query_stats())

        if action == 'attention':
            limit = request.args.get('limit', 50, type=int)
            window_days = request.args.get('window_days', None, type=int)
            queries = services['tracker'].get_queries_needing_attention(limit=limit, window_days=window_days)
            return jsonify({'queries': queries, 'count': len(queries)})

        if action == 'insights':
            window_days = request.args.get('window_days', None, type=int)
            insights = services['insights'].generate_learning_insights(window_days)
            return jsonify({'insights': [i.to_dict() for i in insights], 'count': len(insights)})

        intent = request.args.get('intent')
        if not intent:
            return jsonify({'error': 'intent is required for suggest-patterns'}), 400
        suggestions = services['suggester'].suggest_patterns(intent)
        return jsonify({'intent': intent.upper(), 'suggestions': suggestions})

    except Exception as e:
        logger.error(f"Query learning action '{action}' failed: {e}", exc_info=True)
        return jsonify({'error': 'Query learning request failed', 'details': str(e)}), 500


@query_bp.route('/api/suggested-prompts', methods=['GET'])
def suggested_prompts():
    prompts = _services()['prompts'].get()
    return jsonify({'prompts': prompts})
