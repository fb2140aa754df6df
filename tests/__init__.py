import os

import matplotlib

HIDE_PLOTS = True

if os.environ.get("CI") or HIDE_PLOTS:
    matplotlib.use("Agg")
