"""Module for Testing the FileRegistry of workflow outputs."""
import json
import os
import shutil
import tempfile
import unittest

import numpy


class FileRegistryTests(unittest.TestCase):
    """Tests for ninanor.oneimpact.file_registry.FileRegistry."""

    def setUp(self):
        """Overriding setUp func. to create temporary workspace directory."""
        self.workspace_dir = tempfile.mkdtemp()

    def tearDown(self):
        """Overriding tearDown function to remove temporary directory."""
        shutil.rmtree(self.workspace_dir)

    def test_paths_are_registered_when_used(self):
        """FileRegistry: indexing records the path in the registry."""
        from ninanor.oneimpact import spec
        from ninanor.oneimpact.file_registry import FileRegistry

        f_reg = FileRegistry([
            spec.FileOutput(id='distance', path='intermediate/distance.tif'),
            spec.FileOutput(id='filled_input', path='filled_input.tif'),
        ], self.workspace_dir, '_v2')
        self.assertEqual(f_reg.registry, {})
        distance_path = os.path.join(
            self.workspace_dir, 'intermediate', 'distance_v2.tif')
        self.assertEqual(f_reg['distance'], distance_path)
        self.assertEqual(f_reg.registry, {'distance': distance_path})

        with self.assertRaises(KeyError):
            _ = f_reg['kernel']
        self.assertEqual(list(f_reg.registry), ['distance'])

    def test_duplicate_outputs(self):
        """FileRegistry: output ids and paths must be unique."""
        from ninanor.oneimpact import spec
        from ninanor.oneimpact.file_registry import FileRegistry

        with self.assertRaises(ValueError):
            FileRegistry([
                spec.FileOutput(id='distance', path='distance.tif'),
                spec.FileOutput(id='distance', path='other.tif'),
            ], self.workspace_dir)
        with self.assertRaises(ValueError):
            FileRegistry([
                spec.FileOutput(id='distance', path='distance.tif'),
                spec.FileOutput(id='other', path='distance.tif'),
            ], self.workspace_dir)

    def test_patterns(self):
        """FileRegistry: one path per field value, nested in the registry."""
        from ninanor.oneimpact import spec
        from ninanor.oneimpact.file_registry import FileRegistry

        f_reg = FileRegistry([
            spec.FileOutput(
                id='zoi_cumulative_[RADIUS]',
                path='zoi_cumulative_[RADIUS].tif'),
            spec.FileOutput(
                id='[SHAPE]_[RADIUS]', path='kernels/[RADIUS]-[SHAPE].txt'),
        ], self.workspace_dir)

        self.assertEqual(
            f_reg['zoi_cumulative_[RADIUS]', 500],
            os.path.join(self.workspace_dir, 'zoi_cumulative_500.tif'))
        self.assertEqual(
            f_reg['[SHAPE]_[RADIUS]', 'circle', '1000'],
            os.path.join(self.workspace_dir, 'kernels', '1000-circle.txt'))
        self.assertEqual(f_reg.registry, {
            'zoi_cumulative_[RADIUS]': {
                '500': os.path.join(
                    self.workspace_dir, 'zoi_cumulative_500.tif'),
            },
            '[SHAPE]_[RADIUS]': {
                'circle': {
                    '1000': os.path.join(
                        self.workspace_dir, 'kernels', '1000-circle.txt'),
                },
            },
        })

    def test_wrong_number_of_field_values(self):
        """FileRegistry: patterns take exactly one value per field."""
        from ninanor.oneimpact import spec
        from ninanor.oneimpact.file_registry import FileRegistry

        f_reg = FileRegistry([
            spec.FileOutput(id='distance', path='distance.tif'),
            spec.FileOutput(
                id='density_[RADIUS]', path='density_[RADIUS].tif'),
        ], self.workspace_dir)
        with self.assertRaises(KeyError):
            _ = f_reg['distance', '500']
        with self.assertRaises(KeyError):
            _ = f_reg['density_[RADIUS]']
        with self.assertRaises(KeyError):
            _ = f_reg['density_[RADIUS]', '500', '1000']

    def test_registry_is_jsonifiable(self):
        """FileRegistry: field values are cast to strings."""
        from ninanor.oneimpact import spec
        from ninanor.oneimpact.file_registry import FileRegistry

        f_reg = FileRegistry([
            spec.FileOutput(
                id='density_[RADIUS]', path='density_[RADIUS].tif'),
        ], self.workspace_dir)
        _ = f_reg['density_[RADIUS]', numpy.float32(12.5)]
        self.assertEqual(
            json.loads(json.dumps(f_reg.registry)),
            {'density_[RADIUS]': {'12.5': os.path.join(
                self.workspace_dir, 'density_12.5.tif')}})
