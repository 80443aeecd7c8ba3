"""
Unit tests for AdaptiveChunkProducer.
"""
import unittest
from unittest.mock import MagicMock, patch

from import_engine.modules.import_session import InMemoryImportSession
from import_engine.modules.performance.chunker import AdaptiveChunkProducer
from import_engine.modules.performance.exceptions import SourceFileError
from import_engine.modules.performance.models import ChunkOutcome, PerformanceSample
from import_engine.modules.performance.tests.performance_test_helpers import (
    FakeMemoryProbe,
    MIB,
    write_csv,
    write_text,
    product_rows,
    remove_file,
)


def make_producer(initial_size=50, min_size=5, max_size=200, adaptive=True, session=None):
    session = session or InMemoryImportSession(session_id='chunk-1')
    return AdaptiveChunkProducer(
        session,
        initial_size=initial_size,
        min_size=min_size,
        max_size=max_size,
        memory_probe=FakeMemoryProbe(),
        adaptive=adaptive,
    )


def slow_sample(records_per_second=1.0, memory_per_record=0.0):
    return PerformanceSample(
        timestamp=0.0, duration=1.0, memory_used=0, record_count=1,
        records_per_second=records_per_second, memory_per_record=memory_per_record,
    )


class TestInitialChunkSize(unittest.TestCase):
    """Test cases for initial chunk sizing"""

    def _producer_for(self, file_size, limit, usage=0, initial_size=None, max_size=200):
        session = InMemoryImportSession(session_id='init-1', file_size=file_size)
        with patch('import_engine.modules.performance.chunker.get_process_memory_limit', return_value=limit):
            return AdaptiveChunkProducer(
                session,
                initial_size=initial_size,
                max_size=max_size,
                memory_probe=FakeMemoryProbe(usage=usage),
            )

    def test_small_file_plenty_of_memory(self):
        producer = self._producer_for(file_size=100 * 1024, limit=1024 * MIB)

        self.assertEqual(producer.current_size, 100)  # 50 * 2.0

    def test_medium_file(self):
        producer = self._producer_for(file_size=5 * MIB, limit=1024 * MIB)

        self.assertEqual(producer.current_size, 200)  # 100 * 2.0

    def test_large_file_low_memory(self):
        producer = self._producer_for(file_size=60 * MIB, limit=120 * MIB, usage=40 * MIB)

        self.assertEqual(producer.current_size, 25)  # 25 * 1.0

    def test_memory_factor_below_fifty_mb(self):
        producer = self._producer_for(file_size=20 * MIB, limit=60 * MIB, usage=20 * MIB)

        self.assertEqual(producer.current_size, 25)  # 50 * 0.5

    def test_derived_size_clamped_to_max(self):
        producer = self._producer_for(file_size=5 * MIB, limit=1024 * MIB, max_size=150)

        self.assertEqual(producer.current_size, 150)

    def test_explicit_size_clamped(self):
        self.assertEqual(make_producer(initial_size=1000).current_size, 200)
        self.assertEqual(make_producer(initial_size=1).current_size, 5)

    def test_invalid_bounds_rejected(self):
        with self.assertRaises(ValueError):
            make_producer(min_size=10, max_size=5)
        with self.assertRaises(ValueError):
            make_producer(min_size=0)


class TestChunkSizeAdjustment(unittest.TestCase):
    """Test cases for adjust_chunk_size"""

    def test_growth_after_three_successes(self):
        producer = make_producer(initial_size=50)

        producer.adjust_chunk_size('success')
        producer.adjust_chunk_size('success')
        self.assertEqual(producer.current_size, 50)

        producer.adjust_chunk_size('success')
        self.assertEqual(producer.current_size, 63)  # ceil(62.5)
        self.assertEqual(producer.state.consecutive_successes, 0)
        self.assertEqual(producer.session.configuration['optimal_chunk_size'], 63)

    def test_growth_capped_at_max(self):
        producer = make_producer(initial_size=190)

        for _ in range(3):
            producer.adjust_chunk_size(ChunkOutcome.SUCCESS)

        self.assertEqual(producer.current_size, 200)

    def test_no_growth_when_throughput_low(self):
        producer = make_producer(initial_size=50)
        producer.state.performance_history = [slow_sample() for _ in range(5)]

        for _ in range(3):
            producer.adjust_chunk_size('success')

        self.assertEqual(producer.current_size, 50)
        self.assertEqual(producer.state.consecutive_successes, 3)

    def test_no_growth_when_memory_per_record_high(self):
        producer = make_producer(initial_size=50)
        producer.state.performance_history = [
            slow_sample(records_per_second=100, memory_per_record=3 * MIB) for _ in range(5)
        ]

        self.assertFalse(producer.can_increase())

    def test_can_increase_without_samples(self):
        self.assertTrue(make_producer().can_increase())

    def test_failure_shrinks(self):
        producer = make_producer(initial_size=50)

        producer.adjust_chunk_size('failure')
        self.assertEqual(producer.current_size, 30)

        producer.adjust_chunk_size('failure')
        self.assertEqual(producer.current_size, 18)
        self.assertEqual(producer.state.consecutive_failures, 2)

    def test_failure_resets_success_streak(self):
        producer = make_producer(initial_size=50)
        producer.adjust_chunk_size('success')
        producer.adjust_chunk_size('success')

        producer.adjust_chunk_size('failure')

        self.assertEqual(producer.state.consecutive_successes, 0)

    def test_failure_floor_at_min(self):
        producer = make_producer(initial_size=6)

        producer.adjust_chunk_size('failure')

        self.assertEqual(producer.current_size, 5)

    def test_memory_pressure_shrinks_more_than_failure(self):
        pressured = make_producer(initial_size=50)
        failed = make_producer(initial_size=50)

        pressured.adjust_chunk_size('memory_pressure')
        failed.adjust_chunk_size('failure')

        self.assertEqual(pressured.current_size, 20)
        self.assertLessEqual(pressured.current_size, failed.current_size)

    def test_memory_pressure_floor_at_min(self):
        producer = make_producer(initial_size=10)

        producer.adjust_chunk_size('memory_pressure')

        self.assertEqual(producer.current_size, 5)

    def test_unchanged_size_not_written(self):
        producer = make_producer(initial_size=5)

        producer.adjust_chunk_size('failure')

        self.assertNotIn('optimal_chunk_size', producer.session.configuration)

    def test_unknown_outcome_rejected(self):
        with self.assertRaises(ValueError):
            make_producer().adjust_chunk_size('timeout')

    def test_fixed_size_never_changes(self):
        producer = make_producer(initial_size=40, adaptive=False)

        for outcome in ['success'] * 3 + ['failure', 'memory_pressure']:
            producer.adjust_chunk_size(outcome)

        self.assertEqual(producer.current_size, 40)

    def test_size_stays_within_bounds(self):
        producer = make_producer(initial_size=50, min_size=5, max_size=80)
        outcomes = ['success'] * 12 + ['failure'] * 6 + ['memory_pressure'] * 3 + ['success'] * 9

        for outcome in outcomes:
            producer.adjust_chunk_size(outcome)
            self.assertGreaterEqual(producer.current_size, 5)
            self.assertLessEqual(producer.current_size, 80)
            self.assertIsInstance(producer.current_size, int)


class TestProcessFile(unittest.TestCase):
    """Test cases for streaming a CSV file"""

    def setUp(self):
        self.path = write_csv(product_rows(12))
        self.session = InMemoryImportSession(
            session_id='file-1',
            total_rows=12,
            column_mapping={0: 'sku', 1: '', 2: 'price', 5: 'missing'},
        )

    def tearDown(self):
        remove_file(self.path)

    def test_fixed_chunks_with_partial_tail(self):
        producer = make_producer(initial_size=5, adaptive=False, session=self.session)

        sizes = list(producer.process_file(self.path, len))

        self.assertEqual(sizes, [5, 5, 2])

    def test_row_numbers_and_mapping(self):
        producer = make_producer(initial_size=5, adaptive=False, session=self.session)
        chunks = []

        for _ in producer.process_file(self.path, chunks.append):
            pass

        records = [record for chunk in chunks for record in chunk]
        self.assertEqual([r.row_number for r in records], list(range(2, 14)))
        first = records[0]
        self.assertEqual(first.mapped_fields, {'sku': 'SKU00001', 'price': '1.99'})
        self.assertEqual(first.raw_fields, ['SKU00001', 'Product 1', '1.99'])

    def test_mapping_reaches_fields_past_header_width(self):
        path = write_text("sku,name\nA,apple,EXTRA\n")
        session = InMemoryImportSession(session_id='wide-1', column_mapping={0: 'sku', 2: 'extra'})
        chunks = []
        try:
            producer = make_producer(initial_size=5, adaptive=False, session=session)
            list(producer.process_file(path, chunks.append))
        finally:
            remove_file(path)

        record = chunks[0][0]
        self.assertEqual(record.raw_fields, ['A', 'apple', 'EXTRA'])
        self.assertEqual(record.mapped_fields, {'sku': 'A', 'extra': 'EXTRA'})

    def test_blank_lines_keep_file_row_numbers(self):
        path = write_text("sku\nA\n\nB\n")
        session = InMemoryImportSession(session_id='blank-1', column_mapping={0: 'sku'})
        chunks = []
        try:
            producer = make_producer(initial_size=5, adaptive=False, session=session)
            list(producer.process_file(path, chunks.append))
        finally:
            remove_file(path)

        records = chunks[0]
        self.assertEqual([(r.row_number, r.raw_fields) for r in records], [(2, ['A']), (3, []), (4, ['B'])])
        self.assertEqual(records[1].mapped_fields, {})

    def test_progress_reported(self):
        producer = make_producer(initial_size=5, adaptive=False, session=self.session)

        list(producer.process_file(self.path, len))

        self.assertEqual(self.session.stage, 'processing')
        self.assertEqual(self.session.current_operation, 'Processing chunk 3')
        self.assertEqual(self.session.progress_percentage, 83)  # two chunks of 5 out of 12 rows

    def test_progress_without_total_rows(self):
        self.session.total_rows = None
        producer = make_producer(initial_size=5, adaptive=False, session=self.session)

        list(producer.process_file(self.path, len))

        self.assertEqual(self.session.progress_percentage, 10)

    def test_first_chunk_reports_no_progress(self):
        producer = make_producer(initial_size=5, adaptive=False, session=self.session)

        stream = producer.process_file(self.path, len)
        next(stream)
        stream.close()

        self.assertEqual(self.session.current_operation, 'Processing chunk 1')
        self.assertEqual(self.session.progress_percentage, 0)

    def test_processor_error_reraised_and_shrinks(self):
        producer = make_producer(initial_size=10, session=self.session)
        error = KeyError('sku')

        def processor(chunk):
            raise error

        with self.assertRaises(KeyError) as ctx:
            list(producer.process_file(self.path, processor))

        self.assertIs(ctx.exception, error)
        self.assertEqual(producer.current_size, 6)
        self.assertEqual(self.session.configuration['optimal_chunk_size'], 6)

    def test_missing_file(self):
        producer = make_producer(session=self.session)

        with self.assertRaises(SourceFileError):
            list(producer.process_file('/nonexistent/products.csv', len))

        self.assertEqual(producer.current_size, 50)

    def test_header_only_file(self):
        path = write_csv([])
        try:
            producer = make_producer(session=self.session)
            self.assertEqual(list(producer.process_file(path, len)), [])
        finally:
            remove_file(path)

    def test_reader_closed_when_stream_closed_early(self):
        reader = MagicMock()
        reader.__enter__.return_value = reader
        reader.__exit__.return_value = False
        reader.read.side_effect = [[['sku']], [['A'], ['B']], [['C']], []]
        parser_manager = MagicMock()
        parser_manager.open_rows.return_value = reader
        producer = AdaptiveChunkProducer(
            self.session, initial_size=5, parser_manager=parser_manager, memory_probe=FakeMemoryProbe()
        )

        stream = producer.process_file('products.csv', len)
        self.assertEqual(next(stream), 2)
        stream.close()

        reader.__exit__.assert_called_once()

    def test_performance_stats_are_a_pure_read(self):
        producer = make_producer(initial_size=5, session=self.session)
        list(producer.process_file(self.path, len))

        first = producer.get_performance_stats()
        second = producer.get_performance_stats()

        self.assertEqual(first, second)
        self.assertEqual(first['total_chunks_processed'], producer.chunks_processed)
        self.assertEqual(first['samples_in_window'], producer.chunks_processed)
        self.assertIsNotNone(first['avg_records_per_second'])

    def test_performance_window_bounded(self):
        path = write_csv(product_rows(150))
        try:
            producer = make_producer(initial_size=5, adaptive=False, session=self.session)
            list(producer.process_file(path, len))
        finally:
            remove_file(path)

        self.assertEqual(producer.chunks_processed, 30)
        self.assertEqual(len(producer.state.performance_history), 20)

    def test_stats_before_processing(self):
        stats = make_producer().get_performance_stats()

        self.assertIsNone(stats['avg_records_per_second'])
        self.assertEqual(stats['total_chunks_processed'], 0)


if __name__ == '__main__':
    unittest.main()
