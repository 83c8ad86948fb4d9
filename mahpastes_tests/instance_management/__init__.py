"""Management of application instances for end-to-end tests.

Every test worker gets its own copy of the application. The instances are fully isolated from
each other, so tests running in parallel never see each other's data.

Key concepts:
    - **Instance**: One running application process. It listens on its own port,
      `base_port + worker_index`, and keeps its persistent state in a private data directory
      passed to it in the `MAHPASTES_DATA_DIR` environment variable.
    - **Readiness**: An instance is ready once it answered any HTTP request. Setup waits for
      readiness of each instance before starting the next one.
    - **Session**: One setup, test run and teardown cycle. The `SessionCoordinator` starts
      the configured number of instances sequentially and stops all of them in parallel at
      the end of the run.
    - **Session Descriptor**: JSON manifest of all instances, written once all instances are
      ready and removed on teardown. Test workers read it to find their instance.
    - **Termination**: Graceful signal, bounded wait and forced signal when the process is
      still alive. The data directory is removed afterwards.
"""

# flake8: noqa
from mahpastes_tests.instance_management.descriptor import SessionDescriptor
from mahpastes_tests.instance_management.descriptor import get_descriptor_path
from mahpastes_tests.instance_management.descriptor import load_descriptor
from mahpastes_tests.instance_management.errors import HarnessError
from mahpastes_tests.instance_management.errors import InstanceSetupError
from mahpastes_tests.instance_management.instance import InstanceInfo
from mahpastes_tests.instance_management.instance import get_base_url_for_worker
from mahpastes_tests.instance_management.session import SessionCoordinator
from mahpastes_tests.instance_management.settings import SessionSettings
from mahpastes_tests.instance_management.termination import TerminationOutcome
