"""
End-to-end tests for MemoryService over in-memory stores.
"""

from datetime import datetime, timezone

import pytest

from mindbook.models.core import TimeConstraints
from mindbook.services.answer_synthesizer import NO_CONTEXT
from mindbook.services.memory_service import DELETE_CANCELLED, DELETE_SUCCESS, MemoryServiceError
from mindbook.utils.neptune_client import DAY, HAS_NOTE, HAS_YEAR, MONTH, NOTE, RELATED_TO, USER, YEAR
from mindbook.utils.opensearch_client import OpenSearchError

JAN_5 = datetime(2024, 1, 5, 10, 30, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 10, 15, 0, tzinfo=timezone.utc)

DATED_QUESTION = 'what did I do on January 5, 2024'


def _dated(year=None, month=None, day=None, processed=DATED_QUESTION):
    return {
        'processed_query': processed,
        'query_type': 'general',
        'time_constraints': {'year': year, 'month': month, 'day': day}
    }


class TestAddNote:

    def test_stores_note_in_graph_and_index(self, service, mock_neptune, mock_opensearch):
        status = service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert status == 'Note added on Friday, January 5, 2024 and linked to 0 related notes.'
        for label in (USER, YEAR, MONTH, DAY, NOTE):
            assert len(mock_neptune.labelled(label)) == 1

        note_id = mock_neptune.labelled(NOTE)[0]
        assert mock_neptune.vertices[note_id]['day_name'] == 'Friday'
        assert [document['id'] for document in mock_opensearch.documents] == [note_id]
        assert mock_opensearch.documents[0]['user_id'] == 'u1'

    def test_text_is_normalized_before_storage(self, service, mock_llm, mock_opensearch):
        mock_llm.rewrites['Dentist tomorrow'] = 'Dentist on January 6, 2024'

        service.add_note('Dentist tomorrow', 'u1', timestamp=JAN_5)

        assert mock_opensearch.documents[0]['text'] == 'Dentist on January 6, 2024'
        call = mock_llm.calls_for('You rewrite personal notes')[0]
        assert 'Current date is Friday, January 5, 2024' in call['system']

    def test_similar_note_gets_linked(self, service, mock_neptune):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)
        status = service.add_note('Coffee with Alice again', 'u1', timestamp=JAN_5)

        assert status.endswith('linked to 1 related notes.')
        edge = mock_neptune.related_edges()[0]
        assert edge['similarity_score'] >= 0.7

    def test_notes_of_different_owners_never_link(self, service, mock_neptune):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)
        service.add_note('Met Alice for coffee', 'u2', timestamp=JAN_5)

        assert mock_neptune.related_edges() == []

    def test_relation_failure_keeps_note(self, service, mock_neptune, mock_opensearch):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)
        mock_neptune.fail_merge_edge_label = RELATED_TO

        status = service.add_note('Coffee with Alice again', 'u1', timestamp=JAN_5)

        assert status == 'Note added on Friday, January 5, 2024; related notes could not be linked.'
        assert len(mock_opensearch.documents) == 2
        assert len(mock_neptune.labelled(NOTE)) == 2

    def test_storage_failure_raises(self, service, mock_neptune):
        mock_neptune.fail_merge_edge_label = HAS_YEAR

        with pytest.raises(MemoryServiceError):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

    def test_unindexed_note_is_rolled_back(self, service, mock_neptune, mock_opensearch):
        mock_opensearch.index_note = lambda document: False

        with pytest.raises(MemoryServiceError):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert mock_neptune.labelled(NOTE) == []
        assert len(mock_neptune.deleted) == 1
        assert mock_neptune.get_notes_by_period('u1', TimeConstraints('2024', 'January', '5')) == []

    def test_index_failure_is_rolled_back(self, service, mock_neptune, mock_opensearch):
        def fail(document):
            raise OpenSearchError('Failed to index note: cluster unavailable')

        mock_opensearch.index_note = fail

        with pytest.raises(MemoryServiceError):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert mock_neptune.labelled(NOTE) == []
        assert mock_neptune.get_notes_by_period('u1', TimeConstraints('2024', 'January', '5')) == []

    def test_attach_failure_is_rolled_back(self, service, mock_neptune, mock_opensearch):
        mock_neptune.fail_merge_edge_label = HAS_NOTE

        with pytest.raises(MemoryServiceError):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert mock_neptune.labelled(NOTE) == []
        assert mock_opensearch.documents == []

    def test_retry_after_failed_write_stores_one_note(self, service, mock_neptune, mock_opensearch):
        mock_neptune.fail_merge_edge_label = HAS_NOTE
        with pytest.raises(MemoryServiceError):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        mock_neptune.fail_merge_edge_label = None
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert len(mock_neptune.labelled(NOTE)) == 1
        assert mock_neptune.get_notes_by_period('u1', TimeConstraints('2024', 'January', '5'))[0].text == 'Met Alice for coffee'
        assert len(mock_opensearch.documents) == 1

    def test_failed_rollback_still_raises_original_error(self, service, mock_neptune, mock_opensearch):
        mock_opensearch.index_note = lambda document: False
        mock_neptune.fail_delete = True

        with pytest.raises(MemoryServiceError, match='was not indexed'):
            service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

    def test_empty_text_is_not_stored(self, service, mock_opensearch, mock_llm):
        assert service.add_note('   ', 'u1') == 'Nothing to add: the note is empty.'
        assert mock_opensearch.documents == []
        assert mock_llm.calls == []

    def test_owner_is_required(self, service):
        with pytest.raises(ValueError):
            service.add_note('Met Alice for coffee', '')

    def test_unix_timestamp_is_accepted(self, service, mock_neptune):
        service.add_note('Met Alice for coffee', 'u1', timestamp=1704412800)  # 2024-01-05T00:00:00Z

        assert mock_neptune.labelled(DAY) == ['user:u1/2024/January/5']


class TestQuery:

    def test_dated_question_uses_temporal_hierarchy(self, service, mock_llm):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)
        service.add_note('Bought a new book', 'u1', timestamp=datetime(2024, 1, 8, tzinfo=timezone.utc))
        mock_llm.classifications[DATED_QUESTION] = _dated('2024', 'January', '5')

        outcome = service.run_query(DATED_QUESTION, 'u1', now=NOW)

        assert outcome.strategy == 'temporal'
        assert not outcome.fell_back
        assert outcome.context_blocks == ['Met Alice for coffee']
        assert 'Met Alice for coffee' in outcome.answer

        prompt = mock_llm.calls_for('personal AI assistant')[0]['user']
        assert 'Question: what did I do on January 5, 2024' in prompt
        assert 'Bought a new book' not in prompt

    def test_empty_period_falls_back_to_similarity(self, service, mock_llm):
        service.add_note('Played tennis with Bob', 'u1', timestamp=JAN_5)
        question = 'did I play tennis in March 2023'
        mock_llm.classifications[question] = _dated('2023', 'March', processed=question)

        outcome = service.run_query(question, 'u1', now=NOW)

        assert outcome.fell_back
        assert outcome.strategy == 'similarity'
        assert [result.note.text for result in outcome.results] == ['Played tennis with Bob']

    def test_similarity_question_includes_related_context(self, service, mock_llm):
        service.add_note('Played tennis with Bob', 'u1', timestamp=JAN_5)
        service.add_note('Bob beat me at tennis', 'u1', timestamp=JAN_5)
        service.add_note('Bob likes coffee', 'u1', timestamp=JAN_5)

        outcome = service.run_query('tennis', 'u1', now=NOW)

        assert outcome.strategy == 'similarity'
        assert outcome.decision.query_type == 'similarity'
        assert {result.note.text for result in outcome.results} == {'Played tennis with Bob', 'Bob beat me at tennis'}
        assert all(score >= 0.6 for score in (result.score for result in outcome.results))

    def test_no_memories_gives_honest_answer(self, service, mock_llm):
        answer = service.query_system('do I like tennis?', 'u1', now=NOW)

        assert answer == "No, I don't remember you telling me about that."
        assert NO_CONTEXT in mock_llm.calls_for('personal AI assistant')[0]['user']

    def test_other_owners_notes_are_invisible(self, service, mock_llm):
        service.add_note('Met Alice for coffee', 'u2', timestamp=JAN_5)
        mock_llm.classifications[DATED_QUESTION] = _dated('2024', 'January', '5')

        outcome = service.run_query(DATED_QUESTION, 'u1', now=NOW)

        assert outcome.fell_back
        assert outcome.context_blocks == []

    def test_relative_question_is_resolved_before_routing(self, service, mock_llm):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)
        question = 'what did I do last Friday'
        mock_llm.rewrites[question] = DATED_QUESTION
        mock_llm.classifications[DATED_QUESTION] = _dated('2024', 'January', '5')

        outcome = service.run_query(question, 'u1', now=NOW)

        rewrite = mock_llm.calls_for('You rewrite questions')[0]
        assert rewrite['user'] == question
        assert 'Current date is Wednesday, January 10, 2024' in rewrite['system']
        assert mock_llm.calls_for('You route questions')[0]['user'] == DATED_QUESTION
        assert outcome.strategy == 'temporal'
        assert outcome.context_blocks == ['Met Alice for coffee']

    def test_question_normalization_failure_raises(self, service, mock_llm):
        mock_llm.rewrites['what about yesterday'] = ''

        with pytest.raises(MemoryServiceError):
            service.run_query('what about yesterday', 'u1', now=NOW)

        assert mock_llm.calls_for('You route questions') == []

    def test_classification_failure_raises(self, service, mock_llm):
        mock_llm.classifications['when?'] = 'not json at all'

        with pytest.raises(MemoryServiceError):
            service.query_system('when?', 'u1', now=NOW)

    def test_empty_answer_raises(self, service, mock_llm):
        mock_llm.answer_fn = lambda prompt: '  '

        with pytest.raises(MemoryServiceError):
            service.query_system('anything', 'u1', now=NOW)

    def test_blank_question(self, service, mock_llm):
        assert service.query_system(' ', 'u1') == 'Please ask a question.'
        assert mock_llm.calls == []

    def test_owner_is_required(self, service):
        with pytest.raises(ValueError):
            service.query_system('anything', '  ')

    def test_find_similar_notes(self, service):
        service.add_note('Played tennis with Bob', 'u1', timestamp=JAN_5)
        service.add_note('Dinner in Paris', 'u1', timestamp=JAN_5)

        results = service.find_similar_notes('tennis', 'u1')

        assert [result.note.text for result in results] == ['Played tennis with Bob']


class TestDeleteAllData:

    @pytest.mark.parametrize('confirmation', ['delete', 'DELETE', 'Delete'])
    def test_confirmed_delete_clears_both_stores(self, service, mock_neptune, mock_opensearch, confirmation):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert service.delete_all_data(confirmation) == DELETE_SUCCESS
        assert mock_neptune.cleanup_calls == 1
        assert mock_opensearch.cleanup_calls == 1
        assert mock_neptune.vertices == {}
        assert mock_opensearch.documents == []

    @pytest.mark.parametrize('confirmation', ['', 'no', 'delete all', None])
    def test_anything_else_cancels(self, service, mock_neptune, mock_opensearch, confirmation):
        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert service.delete_all_data(confirmation) == DELETE_CANCELLED
        assert mock_neptune.cleanup_calls == 0
        assert mock_opensearch.cleanup_calls == 0
        assert len(mock_opensearch.documents) == 1

    def test_index_is_recreated_after_delete(self, service, mock_opensearch):
        service.delete_all_data('delete')
        assert not mock_opensearch.index_exists

        service.add_note('Met Alice for coffee', 'u1', timestamp=JAN_5)

        assert mock_opensearch.index_exists
        assert mock_opensearch.create_calls == 2
