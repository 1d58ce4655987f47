from treemesh.presets.trees import PRESETS, get_preset
