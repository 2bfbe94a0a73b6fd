"""
Utility package setup.

Enables pandas Copy-on-Write globally so that fold subsets taken from the
shared dataset never write back into it.
"""

import pandas as pd

pd.options.mode.copy_on_write = True
