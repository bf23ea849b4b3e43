import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import sqlentity
from sqlentity import (
    classes,
    connections,
    entity,
    errors,
    interfaces,
    relations,
    tools,
)
