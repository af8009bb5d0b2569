# Reference backends for the execution-manager runtime
#
# Importing this package registers every backend by name:
#   - tracer:       records resolved instructions without simulating
#   - state_vector: dense numpy simulator (registered last, so it is the
#                   default unless QPU_RUNTIME_BACKEND says otherwise)

from .tracer import TraceEvent, TracerManager
from .state_vector import StateVectorManager, controlled_matrix
