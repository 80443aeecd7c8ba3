"""
End-to-end tests: real CSV files through the full pipeline.
"""
import os
import tempfile
import unittest

from import_engine.modules.import_session import InMemoryImportSession
from import_engine.modules.performance.orchestrator import PipelineOrchestrator
from import_engine.modules.performance.state_store import InMemoryCircuitStateStore
from import_engine.modules.settings import Settings


class TestImportPipelineEndToEnd(unittest.TestCase):
    """Import a 1,000 row product file with every component enabled"""

    def setUp(self):
        handle = tempfile.NamedTemporaryFile('w', suffix='.csv', delete=False, newline='', encoding='utf-8')
        with handle:
            handle.write("sku,name,price,stock\n")
            for i in range(1, 1001):
                handle.write(f"SKU{i:05d},\"Product {i}, deluxe\",{i}.50,{i % 7}\n")
        self.path = handle.name

        self.session = InMemoryImportSession(
            session_id='e2e-1',
            file_type='csv',
            file_size=os.path.getsize(self.path),
            total_rows=None,
            column_mapping={0: 'sku', 1: 'name', 2: 'price', 3: 'stock'},
            original_filename='products.csv',
        )
        self.orchestrator = PipelineOrchestrator.for_session(
            self.session,
            settings=Settings(),
            state_store=InMemoryCircuitStateStore(),
        ).with_smart_chunking().with_memory_management().with_circuit_breaker()

    def tearDown(self):
        os.remove(self.path)

    def test_all_records_processed_once(self):
        imported = []

        def persist(chunk):
            imported.extend(record.mapped_fields['sku'] for record in chunk)
            return len(chunk)

        counts = list(self.orchestrator.process_file(self.path, persist))

        self.assertEqual(sum(counts), 1000)
        self.assertEqual(len(imported), 1000)
        self.assertEqual(len(set(imported)), 1000)
        self.assertEqual(imported[0], 'SKU00001')
        self.assertEqual(imported[-1], 'SKU01000')

    def test_quoted_fields_mapped(self):
        first_chunk = next(iter(self.orchestrator.process_file(self.path, lambda chunk: chunk)))

        record = first_chunk[0]
        self.assertEqual(record.row_number, 2)
        self.assertEqual(record.mapped_fields, {
            'sku': 'SKU00001', 'name': 'Product 1, deluxe', 'price': '1.50', 'stock': '1'
        })

    def test_performance_stats_stable_between_calls(self):
        list(self.orchestrator.process_file(self.path, len))

        first = self.orchestrator.get_performance_stats()
        second = self.orchestrator.get_performance_stats()

        self.assertEqual(first, second)
        self.assertEqual(first['metrics']['failed_chunks'], 0)
        self.assertEqual(first['circuit_breaker']['status'], 'closed')
        self.assertTrue(first['circuit_breaker']['is_healthy'])


if __name__ == '__main__':
    unittest.main()
