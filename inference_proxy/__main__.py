import sys

from inference_proxy.main import main

sys.exit(main())
