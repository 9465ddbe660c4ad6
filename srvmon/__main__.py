from srvmon.main import main

main()
