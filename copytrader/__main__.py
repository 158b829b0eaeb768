from copytrader.main import main

main()
