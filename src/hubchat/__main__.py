from hubchat.cli import main

main()
