from route_tracker.cli import main

main()
