import sys

from comfy_provision.presentation.cli import main

sys.exit(main())
