import json

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder for numpy values in log rows and scenario draw files"""

    def default(self, obj):
        if isinstance(obj, np.generic):
            return obj.item()
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)
