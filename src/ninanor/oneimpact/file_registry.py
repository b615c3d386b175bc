import os.path
import re


class FileRegistry:
    """Absolute paths of the outputs of a workflow.

    A FileRegistry is made from the ``FileOutput`` list of a ``ModelSpec``, a
    workspace directory and an optional file suffix:

    ``file_registry = FileRegistry(MODEL_SPEC.outputs, workspace_dir, suffix)``

    Index it with an output id.  Output ids with bracketed fields, such as
    ``zoi_cumulative_[RADIUS]``, are patterns and take one value per field:

    ``file_registry['zoi_cumulative_[RADIUS]', 500]`` returns the equivalent
    of ``os.path.join(workspace_dir, f'zoi_cumulative_500{suffix}.tif')``.

    Every path handed out is recorded in ``registry``, a dict from output ids
    to paths, nested by field value for patterns::

        {
            'distance': '/.../workspace/distance_suffix.tif',
            'zoi_cumulative_[RADIUS]': {
                '500': '/.../workspace/zoi_cumulative_500_suffix.tif',
                '1000': '/.../workspace/zoi_cumulative_1000_suffix.tif',
            }
        }
    """

    def __init__(self, outputs, workspace_dir, file_suffix=None):
        self.registry = {}
        self._paths = {}
        self._fields = {}

        for output in outputs:
            stem, extension = os.path.splitext(output.path)
            fields = re.findall(r'\[(\w+)\]', stem)
            if fields:
                self._fields[output.id] = fields

            full_path = os.path.abspath(os.path.join(
                workspace_dir, stem + (file_suffix or '') + extension))
            if output.id in self._paths:
                raise ValueError(f'Duplicate id: {output.id}')
            if full_path in self._paths.values():
                raise ValueError(f'Duplicate path: {full_path}')
            self._paths[output.id] = full_path

    def __getitem__(self, keys):
        """Return the path of an output.

        Args:
            keys (str | tuple): the output id, followed by one value per
                bracketed field for patterns.  Values are cast to strings.

        Returns:
            the absolute path (string)

        Raises:
            KeyError: for unknown ids or the wrong number of field values.
        """
        if isinstance(keys, str):
            keys = (keys,)
        key, *values = keys
        values = [str(value) for value in values]
        if key not in self._paths:
            raise KeyError(f'Key not found: {key}')

        path = self._paths[key]
        fields = self._fields.get(key, [])
        if len(values) != len(fields):
            raise KeyError(
                f'{key} expects {len(fields)} field values, got {len(values)}')
        if not fields:
            self.registry[key] = path
            return path

        for field, value in zip(fields, values):
            path = path.replace(f'[{field}]', value)

        entry = self.registry.setdefault(key, {})
        for value in values[:-1]:
            entry = entry.setdefault(value, {})
        entry[values[-1]] = path
        return path
